"""
Turns command lines into shell invocations and hands them to an execution
context (see lcmake.jobs).
"""

import logging, sys

from lcmake import jobs

_log = logging.getLogger('lcmake.process')

if sys.platform == 'win32':
    shell = 'sh'
else:
    shell = '/bin/sh'

def prepare_command(cline):
    """
    Returns a list of command and arguments for the given command line string.
    Every command line goes through the shell.
    """
    return [shell, '-c', cline]

def call(cline, env, cwd, loc, context, echo):
    """
    Run a recipe line.

    @returns the exit status
    """
    argv = prepare_command(cline)
    _log.debug("%s: running command '%s'", loc, cline)
    return context.call(argv, env=env, cwd=cwd, echo=echo)

def shelloutput(cline, env, cwd, loc, context=None):
    """
    Run a command for $(shell ...) and return its output with newlines
    removed. A command that cannot be run, or whose output isn't UTF-8,
    produces an empty string rather than an error.
    """
    if context is None:
        context = jobs.getcontext()

    argv = prepare_command(cline)
    _log.debug("%s: running command '%s'", loc, cline)

    res, stdout = context.capture(argv, env=env, cwd=cwd)
    if stdout is None:
        _log.debug("%s: command '%s' could not be run", loc, cline)
        return ''

    try:
        stdout = stdout.decode('utf-8')
    except UnicodeDecodeError:
        _log.debug("%s: output of command '%s' is not valid UTF-8", loc, cline)
        return ''

    if res != 0:
        _log.debug("%s: command '%s' returned %i", loc, cline, res)

    stdout = stdout.replace('\r\n', '\n')
    return stdout.replace('\n', '').strip()
