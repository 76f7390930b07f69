"""
Exceptions raised while parsing makefiles and building targets.
"""


class MakeError(Exception):
    def __init__(self, message, loc=None):
        Exception.__init__(self, message)
        self.msg = message
        self.loc = loc

    def __str__(self):
        locstr = ''
        if self.loc is not None:
            locstr = "%s: " % (self.loc,)

        return "%s%s" % (locstr, self.msg)


class SyntaxError(MakeError):
    pass


class DataError(MakeError):
    pass


class ResolutionError(DataError):
    """
    Raised when dependency resolution fails, either due to recursion or to missing
    prerequisites.
    """
    pass


class CommandError(MakeError):
    """
    Raised when a recipe line exits with a nonzero status.
    """

    def __init__(self, message, loc=None, exitcode=None):
        MakeError.__init__(self, message, loc)
        self.exitcode = exitcode
