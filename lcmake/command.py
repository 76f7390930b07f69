"""
Makefile execution from the command line.

Multiple makes can be run within the same process. Each one has its own
Parser and Makefile, environment, and working directory; main() never
changes the process working directory.
"""

import argparse, logging, os, sys

from lcmake import engine, errors

_log = logging.getLogger('lcmake.command')

_defaultmakefiles = ('GNUmakefile', 'makefile', 'Makefile')

def findmakefile(workdir):
    """
    Find the makefile to read when none was named with -f.

    @returns the file name, or None if there is none
    """
    for f in _defaultmakefiles:
        if os.path.isfile(os.path.join(workdir, f)):
            return f
    return None

def _getparser():
    op = argparse.ArgumentParser(prog='lcmake',
                                 description="Bring TARGET, or the first target in the makefile, up to date.")
    op.add_argument('-C', '--directory',
                    dest='directory', default=None,
                    help="Change to the given directory before doing anything else")
    op.add_argument('-f', '--file', '--makefile',
                    dest='makefile', default=None,
                    help="Use FILE as the makefile instead of Makefile")
    op.add_argument('-s', '--silent', '--quiet',
                    action='store_true', dest='silent', default=False,
                    help="Don't echo commands")
    op.add_argument('-p', '--print-data-base',
                    action='store_true', dest='printdb', default=False,
                    help="Print the variables and rules read from the makefiles")
    op.add_argument('-d', '--debug',
                    action='store_true', dest='verbose', default=False,
                    help="Log debugging information")
    op.add_argument('target', nargs='?', default=None,
                    help="TARGET to build")
    return op

def main(args, env, cwd, context=None):
    """
    Run one make invocation.

    @returns the exit status: 0 on success, 2 if anything failed
    """

    options = _getparser().parse_args(args)

    logging.basicConfig(format='%(name)s: %(message)s')
    if options.verbose:
        logging.getLogger('lcmake').setLevel(logging.DEBUG)

    workdir = cwd
    if options.directory is not None:
        workdir = os.path.join(cwd, options.directory)

    try:
        if not os.path.isdir(workdir):
            raise errors.DataError("could not change to directory '%s'" % options.directory)

        p = engine.Parser(workdir=workdir, env=env, context=context, make=engine.findmake())

        makefile = options.makefile
        if makefile is None:
            makefile = findmakefile(p.workdir)
        if makefile is not None:
            p.parsefile(makefile)
        else:
            _log.info("no makefile found in '%s'", p.workdir)

        m = p.finish(silent=options.silent)

        if options.printdb:
            m.dump(sys.stdout)

        if options.target is None:
            m.builddefault()
        else:
            m.buildtarget(options.target)
    except errors.MakeError as e:
        print("make: *** %s.  Stop." % e, file=sys.stderr)
        return 2

    return 0

def entrypoint():
    sys.exit(main(sys.argv[1:], os.environ, os.getcwd()))
