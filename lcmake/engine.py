"""
This module houses the entire makefile parsing and execution
engine.

It's all collapsed into one module because make concepts are heavily
intertwined -- parsing requires expansion, building requires expansion,
and expansion requires the variables that parsing produced.
"""

import logging, re, os, sys, time
from io import StringIO

from lcmake import errors, jobs, process
from lcmake.basic import Data

"""
A representation of makefile data structures.
"""

_data_log = logging.getLogger('lcmake.data')

def getmtime(path):
    try:
        s = os.stat(path)
        return s.st_mtime
    except OSError:
        return None

def mtimeisnewer(targettime, deptime):
    """
    Is the target strictly newer than its newest dependency? A missing
    target is never newer.
    """

    if targettime is None:
        return False
    return targettime > deptime

def getindent(stack):
    return ''.ljust(len(stack) - 1)

def findmake():
    """
    Find the command line that re-invokes this tool, for $(MAKE).
    """
    argv0 = sys.argv[0] if len(sys.argv) else ''
    if argv0 == '' or not os.path.isfile(argv0):
        return 'make'

    argv0 = os.path.realpath(argv0)
    if argv0.endswith('.py'):
        return '%s %s' % (sys.executable, argv0)
    return argv0


class Variables(object):
    """
    The variable store: variable names mapped to values which have already
    been expanded when they were set.

    Both assignment flavors expand at definition time. The flavor is kept
    only so that a database dump can show how a variable was written.
    """

    FLAVOR_SIMPLE = 0       # NAME = value
    FLAVOR_IMMEDIATE = 1    # NAME := value, NAME ::= value

    __slots__ = ('_map',)

    def __init__(self, make=None):
        self._map = {}

        if make is None:
            make = findmake()
        self.set('MAKE', Variables.FLAVOR_SIMPLE, make)
        self.set('CC', Variables.FLAVOR_SIMPLE, 'cc')
        self.set('CXX', Variables.FLAVOR_SIMPLE, 'c++')

    def get(self, name):
        """
        Get the flavor and value of a variable.

        @returns a tuple (flavor, value). Both are None if the variable is not set.
        """
        return self._map.get(name, (None, None))

    def set(self, name, flavor, value):
        assert flavor in (Variables.FLAVOR_SIMPLE, Variables.FLAVOR_IMMEDIATE)
        self._map[name] = (flavor, value)

    def __iter__(self):
        for name, (flavor, value) in self._map.items():
            yield name, flavor, value

    def __contains__(self, name):
        return name in self._map

    def __len__(self):
        return len(self._map)


class Rule(object):
    """
    A rule as it appears in a makefile. A single rule line may name several
    targets. The commands still hold their $@, $? and $< references, which are
    only expanded when a target is built.
    """

    __slots__ = ('targets', 'prerequisites', 'commands', 'loc')

    def __init__(self, targets, prerequisites, commands, loc):
        self.targets = targets
        self.prerequisites = prerequisites
        self.commands = commands
        self.loc = loc

    def __repr__(self):
        return "Rule<%s>(%r: %r)" % (self.loc, self.targets, self.prerequisites)


class FinalRule(object):
    """
    All the rules for a single target, merged. Prerequisites accumulate
    across rules; commands come from the last rule seen for the target.
    """

    __slots__ = ('target', 'prerequisites', 'commands', 'loc')

    def __init__(self, target, prerequisites, commands, loc=None):
        self.target = target
        self.prerequisites = prerequisites
        self.commands = commands
        self.loc = loc

    def dump(self, fd, indent):
        print("%s%s: %s" % (indent, self.target, ' '.join(self.prerequisites)), file=fd)
        for c in self.commands:
            print("%s\t%s" % (indent, c), file=fd)

    def __repr__(self):
        return "FinalRule<%s>(%r: %r)" % (self.loc, self.target, self.prerequisites)


def isinferencerule(target):
    """
    A POSIX suffix rule looks like '.c.o' or '.c': a dot followed by a
    lowercase letter. A dot followed by an uppercase letter is a special
    target name like .PHONY and is treated as an ordinary rule.
    """
    return len(target) > 1 and target[0] == '.' and target[1].isalpha() and not target[1].isupper()

def finalizerules(rules):
    """
    Merge the raw rule list into one FinalRule per target, in order of first
    appearance.

    @returns a tuple (finalrules, appendimplicitrules)
    """

    finalrules = []
    bytarget = {}
    appendimplicitrules = True
    sawinferencerule = False

    for r in rules:
        if len(r.targets) == 1:
            target = r.targets[0]

            if target == '.POSIX':
                continue

            if target == '.SUFFIXES':
                if not len(r.prerequisites):
                    appendimplicitrules = False
                elif r.prerequisites != ['.hpux_make_needs_suffix_list']:
                    raise errors.DataError("unimplemented: .SUFFIXES with prerequisites '%s'" % ' '.join(r.prerequisites), r.loc)
                continue

            if isinferencerule(target):
                if not sawinferencerule:
                    _data_log.info("%s: POSIX-style inference rules are not implemented, ignoring '%s'", r.loc, target)
                    sawinferencerule = True
                continue

        for target in r.targets:
            fr = bytarget.get(target, None)
            if fr is None:
                fr = FinalRule(target, list(r.prerequisites), list(r.commands), r.loc)
                bytarget[target] = fr
                finalrules.append(fr)
            else:
                fr.prerequisites.extend(r.prerequisites)
                fr.commands = list(r.commands)
                fr.loc = r.loc

    if appendimplicitrules:
        _data_log.debug("Implicit rules are not implemented, none appended")

    return finalrules, appendimplicitrules

def findmodifiers(command):
    """
    Find a single @ prefixed on the command.
    @returns (command, isHidden)
    """

    if command.startswith('@'):
        return command[1:].strip(), True
    return command, False


class Makefile(object):
    """
    The loaded build model: the finalized rules in first-appearance order
    and the variables they were parsed with, along with the settings used to
    run commands.
    """

    def __init__(self, variables, rules, workdir=None, env=None, context=None,
                 silent=False, included=(), appendimplicitrules=True):
        self.variables = variables
        self.rules = rules
        self._targets = {}
        for r in rules:
            assert r.target not in self._targets, "duplicate target '%s'" % r.target
            self._targets[r.target] = r

        if workdir is None:
            workdir = os.getcwd()
        self.workdir = os.path.realpath(workdir)

        if env is None:
            env = os.environ
        self.env = env

        if context is None:
            context = jobs.getcontext()
        self.context = context

        self.silent = silent
        self.included = list(included)
        self.appendimplicitrules = appendimplicitrules

    def hastarget(self, target):
        return target in self._targets

    def gettarget(self, target):
        return self._targets.get(target, None)

    def _fspath(self, name):
        return os.path.join(self.workdir, name)

    def build(self, rule, targetstack=()):
        """
        Bring `rule.target` up to date, building its prerequisites first.

        @returns the modification time of the target: the time on disk if it was
        already up to date, otherwise the time it was remade.
        """

        if rule.target in targetstack:
            raise errors.ResolutionError("Recursive dependency: %s -> %s" % (
                    " -> ".join(targetstack), rule.target), rule.loc)

        targetstack = targetstack + (rule.target,)
        indent = getindent(targetstack)

        _data_log.info("%sConsidering target '%s'", indent, rule.target)

        newestdep = 0.0
        newestname = None
        for p in rule.prerequisites:
            prule = self.gettarget(p)
            if prule is not None:
                mtime = self.build(prule, targetstack)
            else:
                mtime = getmtime(self._fspath(p))
                if mtime is None:
                    raise errors.ResolutionError("No rule to make target '%s' needed by '%s'" % (p, rule.target), rule.loc)

            if mtime > newestdep:
                newestdep = mtime
                newestname = p

        targettime = getmtime(self._fspath(rule.target))
        if mtimeisnewer(targettime, newestdep):
            _data_log.info("%sTarget '%s' is up to date.", indent, rule.target)
            return targettime

        if targettime is None:
            _data_log.info("%sRemaking %s using rule at %s: target doesn't exist", indent, rule.target, rule.loc)
        else:
            _data_log.info("%sRemaking %s using rule at %s because %s is newer.", indent, rule.target, rule.loc, newestname)

        self.runcommands(rule)
        return time.time()

    def runcommands(self, rule):
        automatic = (rule.target, rule.prerequisites)
        path = "commands for '%s'" % rule.target

        for c in rule.commands:
            cline = expandstring(c, self, automatic, path).strip()
            cline, isHidden = findmodifiers(cline)
            if cline == '':
                continue

            if isHidden or self.silent:
                echo = None
            else:
                echo = cline

            res = process.call(cline, env=self.env, cwd=self.workdir, loc=rule.loc,
                               context=self.context, echo=echo)
            if res != 0:
                raise errors.CommandError("command '%s' failed, return code %i" % (cline, res),
                                          rule.loc, exitcode=res)

    def _buildgoal(self, rule):
        try:
            return self.build(rule)
        except RecursionError:
            raise errors.ResolutionError("Dependency chain of '%s' is too deep" % rule.target, rule.loc)

    def builddefault(self):
        """
        Build the first target in the makefile.
        """
        if not len(self.rules):
            raise errors.DataError("No targets")

        return self._buildgoal(self.rules[0])

    def buildtarget(self, target):
        rule = self.gettarget(target)
        if rule is None:
            raise errors.ResolutionError("No rule to make target '%s'" % target)

        return self._buildgoal(rule)

    def dump(self, fd, indent=''):
        print("%s# Variables" % indent, file=fd)
        for name, flavor, value in self.variables:
            if flavor == Variables.FLAVOR_IMMEDIATE:
                token = ':='
            else:
                token = '='
            print("%s%s %s %s" % (indent, name, token, value), file=fd)

        print("%s# Rules" % indent, file=fd)
        for r in self.rules:
            r.dump(fd, indent)

    def __str__(self):
        fd = StringIO()
        self.dump(fd, '')
        return fd.getvalue()


"""
Macro expansion.

A reference starts at a '$' and is resolved as soon as it is read: while
parsing against the variable store, and while building against the
variable store plus the automatic variables of the rule being built.
"""

_matchingbrace = {
    '(': ')',
    '{': '}',
    }

_automaticvariables = ('@', '?', '<')

# a '$' that isn't an automatic variable reference
_recipedollarre = re.compile(r'\$(?![@?<])')

def expandmacro(d, makefile, automatic=None, inrecipe=False):
    """
    Expand a single reference. `d` is positioned just after the '$'.

    @param makefile (Parser or Makefile) supplies variables, env, workdir
           and context.

    @param automatic None while parsing, in which case $@, $? and $< are
           passed through untouched since they have no value until a rule
           is built. While building, a (target, prerequisites) tuple.

    @param inrecipe when set, $$ is kept escaped, as is any '$' in the value
           of a variable or $(shell ...), so that the build-time pass over
           the recipe produces the single '$' the shell should see. $@, $?
           and $< in such a value are left for the build-time pass.
    """

    start = d.offset - 1
    c = d.next()
    if c is None:
        raise errors.SyntaxError("unterminated variable reference", d.getloc(start))

    if c == '$':
        if inrecipe:
            return '$$'
        return '$'

    if c in _automaticvariables:
        if automatic is None:
            return '$' + c

        target, prerequisites = automatic
        if c == '@':
            return target
        # $? and $< both name every prerequisite
        return ' '.join(prerequisites)

    if c in _matchingbrace:
        name = readbracketed(d, _matchingbrace[c], makefile, automatic, start)
        value = resolvevariable(name, makefile, d, start)
        if inrecipe:
            # recipes are expanded again at build time
            value = _recipedollarre.sub('$$', value)
        return value

    raise errors.SyntaxError("unrecognized macro escape '$%s'" % c, d.getloc(start))

def readbracketed(d, closebrace, makefile, automatic, start):
    """
    Read the name of a bracketed reference up to `closebrace`, expanding
    any references nested inside it.
    """

    parts = []
    while True:
        c = d.next()
        if c is None:
            raise errors.SyntaxError("unterminated variable reference", d.getloc(start))

        if c == closebrace:
            return ''.join(parts)

        if c == '#':
            raise errors.SyntaxError("comment inside variable reference", d.getloc(d.offset - 1))

        if c == '$':
            parts.append(expandmacro(d, makefile, automatic))
        else:
            parts.append(c)

def resolvevariable(name, makefile, d, start):
    if name.startswith('shell '):
        return process.shelloutput(name[6:], env=makefile.env, cwd=makefile.workdir,
                                   loc=d.getloc(start), context=makefile.context)

    flavor, value = makefile.variables.get(name)
    if value is None:
        if _data_log.isEnabledFor(logging.DEBUG):
            _data_log.debug("%s: variable '%s' was not set", d.getloc(start), name)
        return ''

    return value.strip()

def expandstring(s, makefile, automatic=None, path=None):
    """
    Expand every reference in `s`. Used on recipe lines at build time.
    """

    d = Data.fromstring(s, path)
    parts = []
    while True:
        j = s.find('$', d.offset)
        if j == -1:
            parts.append(s[d.offset:])
            break

        parts.append(s[d.offset:j])
        d.offset = j + 1
        parts.append(expandmacro(d, makefile, automatic))

    return ''.join(parts)


"""
Functionality for parsing makefile syntax.

Makefiles are scanned one character at a time. The parser is always in
exactly one of four states, and every ordinary character or expansion is
appended to the `work` buffer of that state:

* Left: reading a target list or a variable name, up to ':' or '='.
* DefiningVariable: reading the value of a variable.
* DefiningRule: reading the prerequisites of a rule.
* AccumulatingRecipe: reading the tab-indented command lines of a rule.

Newlines drive the transitions between them. Directives (include,
-include, ifdef, ifndef, else, endif) are recognized when a line ends while
still in the Left state.
"""

_pars_log = logging.getLogger('lcmake.parser')

class Left(object):
    __slots__ = ('work',)

    def __init__(self):
        self.work = ''

class DefiningVariable(object):
    __slots__ = ('name', 'flavor', 'work')

    def __init__(self, name, flavor):
        self.name = name
        self.flavor = flavor
        self.work = ''

class DefiningRule(object):
    __slots__ = ('targets', 'loc', 'work')

    def __init__(self, targets, loc):
        self.targets = targets
        self.loc = loc
        self.work = ''

class AccumulatingRecipe(object):
    __slots__ = ('targets', 'prerequisites', 'commands', 'loc', 'work')

    def __init__(self, targets, prerequisites, loc):
        self.targets = targets
        self.prerequisites = prerequisites
        self.commands = []
        self.loc = loc
        self.work = ''

_directivesre = re.compile(r'(-?include|ifdef|ifndef)(?:$|\s+)')
_conditionre = re.compile(r'(ifdef|ifndef)(?:$|\s+)')

def _skipblanklines(d):
    """
    Skip empty and comment-only lines after a rule or command line, so that
    they don't end the rule.
    """
    while True:
        c = d.peek()
        if c == '\n':
            d.next()
        elif c == '#':
            d.skiptoeol()
        else:
            return

class Parser(object):
    """
    Reads makefiles into a variable store and a list of raw rules.

    Call parsefile() or parsestring() as many times as needed, then finish()
    to merge the rules into a Makefile.
    """

    def __init__(self, variables=None, workdir=None, env=None, context=None, make=None):
        if variables is None:
            variables = Variables(make=make)
        self.variables = variables

        if workdir is None:
            workdir = os.getcwd()
        self.workdir = os.path.realpath(workdir)

        if env is None:
            env = os.environ
        self.env = env

        if context is None:
            context = jobs.getcontext()
        self.context = context

        self.rules = []

        # the list of included makefiles, whether or not they existed
        self.included = []

        self._parsing = []

    def include(self, path, required=True, loc=None):
        """
        Include the makefile at `path`.
        """
        self.included.append((path, required))
        if not self.parsefile(path, required=required, loc=loc):
            _pars_log.info("%s: optional makefile '%s' could not be read, skipping", loc, path)

    def parsefile(self, path, required=True, loc=None):
        """
        Parse the makefile at `path`, relative to the working directory.

        @returns False if the file could not be opened and was not required.
        """

        fspath = os.path.realpath(os.path.join(self.workdir, path))
        if fspath in self._parsing:
            raise errors.DataError("makefile '%s' includes itself" % path, loc)

        try:
            with open(fspath, 'rb') as fd:
                data = fd.read()
        except OSError as e:
            if not required:
                return False
            raise errors.DataError("could not open makefile '%s': %s" % (path, e.strerror), loc)

        try:
            s = data.decode('utf-8')
        except UnicodeDecodeError:
            raise errors.SyntaxError("makefile '%s' is not valid UTF-8" % path, loc)

        _pars_log.debug("Parsing makefile '%s'", path)

        self._parsing.append(fspath)
        try:
            self.parsestring(s, path)
        finally:
            self._parsing.pop()

        return True

    def parsestring(self, s, filename):
        """
        Parse a string containing makefile data.
        """

        # the last line doesn't need a newline
        if s != '' and not s.endswith('\n'):
            s += '\n'

        d = Data.fromstring(s, filename)
        state = Left()
        linestart = 0

        # the top is True when lines are being read, False when they are
        # skipped by a conditional
        condstack = [True]
        # conditionals opened inside a skipped region
        skipdepth = 0
        skipline = ''

        try:
            while True:
                c = d.next()
                if c is None:
                    break

                if not condstack[-1]:
                    if c != '\n':
                        skipline += c
                        continue

                    word = skipline.strip()
                    skipline = ''
                    linestart = d.offset

                    if _conditionre.match(word) is not None:
                        skipdepth += 1
                    elif word == 'else':
                        if skipdepth == 0:
                            condstack[-1] = True
                    elif word == 'endif':
                        if skipdepth == 0:
                            condstack.pop()
                        else:
                            skipdepth -= 1
                    continue

                if c == '#':
                    d.skiptoeol()
                elif c == '$':
                    state.work += expandmacro(d, self, inrecipe=isinstance(state, AccumulatingRecipe))
                elif c == ':':
                    if isinstance(state, Left):
                        state = self._colon(d, state, linestart)
                    else:
                        state.work += c
                elif c == '=':
                    if isinstance(state, Left):
                        state = DefiningVariable(state.work, Variables.FLAVOR_SIMPLE)
                    else:
                        state.work += c
                elif c == '\\':
                    c = d.next()
                    if c == '\n':
                        state.work += ' '
                    elif c is None:
                        state.work += '\\'
                    else:
                        state.work += '\\' + c
                elif c == '\n':
                    state = self._endline(d, state, condstack, linestart)
                    linestart = d.offset
                else:
                    state.work += c
        except RecursionError:
            raise errors.SyntaxError("references nested too deeply", d.getloc(linestart))

        if not isinstance(state, Left) or state.work.strip() != '':
            raise errors.SyntaxError("unexpected end of input", d.getloc())

        if len(condstack) != 1:
            raise errors.SyntaxError("conditional never terminated with endif", d.getloc())

    def _colon(self, d, state, linestart):
        c = d.peek()
        if c == ':':
            d.next()
            if d.next() != '=':
                raise errors.SyntaxError("double-colon rules are not supported", d.getloc(linestart))
            return DefiningVariable(state.work, Variables.FLAVOR_IMMEDIATE)

        if c == '=':
            d.next()
            return DefiningVariable(state.work, Variables.FLAVOR_IMMEDIATE)

        return DefiningRule(state.work.split(), d.getloc(linestart))

    def _endline(self, d, state, condstack, linestart):
        """
        Handle the end of a line.

        @returns the new parser state
        """

        if isinstance(state, Left):
            self._directive(state.work.strip(), condstack, d.getloc(linestart))
            return Left()

        if isinstance(state, DefiningVariable):
            name = state.name.strip()
            if name == '':
                raise errors.DataError("Empty variable name", d.getloc(linestart))

            _pars_log.debug("Setting variable '%s' to '%s'", name, state.work)
            self.variables.set(name, state.flavor, state.work)
            return Left()

        if isinstance(state, DefiningRule):
            _skipblanklines(d)
            prerequisites = state.work.split()
            if d.peek() == '\t':
                d.next()
                return AccumulatingRecipe(state.targets, prerequisites, state.loc)

            self._addrule(Rule(state.targets, prerequisites, [], state.loc))
            return Left()

        assert isinstance(state, AccumulatingRecipe)

        _skipblanklines(d)
        state.commands.append(state.work)
        if d.peek() == '\t':
            d.next()
            state.work = ''
            return state

        self._addrule(Rule(state.targets, state.prerequisites, state.commands, state.loc))
        return Left()

    def _directive(self, line, condstack, loc):
        if line == '':
            return

        m = _directivesre.match(line)
        if m is not None:
            kword = m.group(1)
            arg = line[m.end(0):].strip()

            if kword in ('include', '-include'):
                if arg == '':
                    raise errors.SyntaxError("'%s' directive requires a file name" % kword, loc)
                for path in arg.split():
                    self.include(path, required=kword == 'include', loc=loc)
                return

            if arg == '':
                raise errors.SyntaxError("'%s' directive requires a variable name" % kword, loc)

            if kword == 'ifdef':
                condstack.append(arg in self.variables)
            else:
                condstack.append(arg not in self.variables)
            _pars_log.debug("%s: %s %s: %s", loc, kword, arg, condstack[-1])
            return

        if line == 'else':
            if len(condstack) == 1:
                raise errors.SyntaxError("unmatched 'else' directive", loc)

            # we were reading lines, so the else branch is skipped
            condstack[-1] = False
            return

        if line == 'endif':
            if len(condstack) == 1:
                raise errors.SyntaxError("unmatched 'endif' directive", loc)

            condstack.pop()
            return

        raise errors.SyntaxError("missing separator, expected ':' or '=' in '%s'" % line, loc)

    def _addrule(self, rule):
        _pars_log.debug("%s: rule %s: %s", rule.loc, ' '.join(rule.targets), ' '.join(rule.prerequisites))
        self.rules.append(rule)

    def finish(self, silent=False):
        """
        Merge the rules read so far into a Makefile ready to build.
        """
        rules, appendimplicitrules = finalizerules(self.rules)
        return Makefile(self.variables, rules, workdir=self.workdir, env=self.env,
                        context=self.context, silent=silent, included=self.included,
                        appendimplicitrules=appendimplicitrules)

def parsestring(s, filename, silent=False, **kwargs):
    """
    Parse a string containing makefile data into a Makefile.
    """

    p = Parser(**kwargs)
    p.parsestring(s, filename)
    return p.finish(silent=silent)

def parsefile(pathname, silent=False, **kwargs):
    """
    Parse a makefile on disk into a Makefile.
    """

    p = Parser(**kwargs)
    p.parsefile(pathname)
    return p.finish(silent=silent)
