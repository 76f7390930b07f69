"""
Execution of the processes that recipes and $(shell ...) ask for.

Everything runs serially: a job is started and waited for before anything
else happens.
"""

import logging, sys
import subprocess

_log = logging.getLogger('lcmake.process')


class Job(object):
    """
    A single job to be executed.
    """
    def __init__(self):
        self.exitcode = -127

    def finish(self, result):
        self.exitcode = result
        return result

class PopenJob(Job):
    """
    A job that executes a command using subprocess.Popen. Standard streams are
    inherited unless `capture` is set, in which case standard output is
    collected into `output`.
    """
    def __init__(self, argv, executable, env, cwd, capture=False):
        Job.__init__(self)
        self.argv = argv
        self.executable = executable
        self.env = env
        self.cwd = cwd
        self.capture = capture
        self.output = None

    def run(self):
        if self.capture:
            stdout = subprocess.PIPE
        else:
            stdout = None

        try:
            p = subprocess.Popen(self.argv, executable=self.executable, env=self.env,
                                 cwd=self.cwd, stdout=stdout)
        except OSError as e:
            if not self.capture:
                print(e, file=sys.stderr)
            _log.debug("could not start %r: %s", self.argv, e)
            return self.finish(-127)

        self.output, stderr = p.communicate()
        return self.finish(p.returncode)

class SerialContext(object):
    """
    Runs processes one at a time, blocking until each one exits.
    """

    def call(self, argv, env, cwd, echo, executable=None):
        """
        Run `argv` with inherited standard streams, printing `echo` first if it
        is not None.

        @returns the exit status
        """
        if echo is not None:
            print(echo)
        # output from the child must not overtake the echo
        sys.stdout.flush()

        job = PopenJob(argv, executable=executable, env=env, cwd=cwd)
        return job.run()

    def capture(self, argv, env, cwd, executable=None):
        """
        Run `argv` and collect its standard output.

        @returns (exitstatus, output). output is None if the process could not
        be started.
        """
        job = PopenJob(argv, executable=executable, env=env, cwd=cwd, capture=True)
        job.run()
        return job.exitcode, job.output

_serialContext = None

def getcontext():
    global _serialContext
    if _serialContext is None:
        _serialContext = SerialContext()
    return _serialContext
