"""
Basic type definitions. Do not introduce dependencies to other lcmake modules,
or you risk circular dependencies.
"""

import bisect
import re

_tabwidth = 4


class Location(object):
    """
    A location within a makefile.

    Locations are path/line/column. Lines count from 1, columns from 0 with
    tabs advancing to the next multiple of the tab width.
    """
    __slots__ = ('path', 'line', 'column')

    def __init__(self, path, line, column):
        self.path = path
        self.line = line
        self.column = column

    def offset(self, s, start, end):
        """
        Returns a new location offset by
        the specified string.
        """

        if start == end:
            return self

        skiplines = s.count('\n', start, end)
        line = self.line + skiplines
        if skiplines:
            lastnl = s.rfind('\n', start, end)
            assert lastnl != -1
            start = lastnl + 1
            column = 0
        else:
            column = self.column

        while True:
            j = s.find('\t', start, end)
            if j == -1:
                column += end - start
                break

            column += j - start
            column += _tabwidth
            column -= column % _tabwidth
            start = j + 1

        return Location(self.path, line, column)

    def __str__(self):
        return "%s:%s:%s" % (self.path, self.line, self.column)


_newline = re.compile('\n')
class Data(object):
    """
    The text of a makefile, consumed one character at a time.

    The parser and the macro expander share one Data instance, so a nested
    reference like $(A$(B)) consumes input from the same position the
    parser will resume at.
    """

    __slots__ = ('s', 'offset', 'path', '_newlines')

    def __init__(self, s, path, offset=0):
        self.s = s
        self.path = path
        self.offset = offset
        self._newlines = None

    @staticmethod
    def fromstring(s, path):
        return Data(s, path)

    def peek(self):
        """
        Return the next character without consuming it, or None at the end
        of the data.
        """
        if self.offset < len(self.s):
            return self.s[self.offset]
        return None

    def next(self):
        c = self.peek()
        if c is not None:
            self.offset += 1
        return c

    def atend(self):
        return self.offset >= len(self.s)

    def skiptoeol(self):
        """
        Advance to the next newline, leaving it unconsumed.
        """
        j = self.s.find('\n', self.offset)
        if j == -1:
            self.offset = len(self.s)
        else:
            self.offset = j

    def getloc(self, offset=None):
        if offset is None:
            offset = self.offset
        assert offset >= 0 and offset <= len(self.s)

        if self._newlines is None:
            self._newlines = [m.start(0) for m in _newline.finditer(self.s)]

        # the number of newlines before offset is the zero-based line
        line = bisect.bisect_left(self._newlines, offset)
        start = self._newlines[line - 1] + 1 if line else 0
        return Location(self.path, line + 1, 0).offset(self.s, start, offset)
