import contextlib
import io
import os
import shutil
import tempfile
import unittest

from lcmake import command

class RecordingContext(object):
    def __init__(self):
        self.commands = []
        self.cwds = []
        self.echoes = []

    def call(self, argv, env, cwd, echo, executable=None):
        self.commands.append(argv[-1])
        self.cwds.append(cwd)
        if echo is not None:
            self.echoes.append(echo)
        return 0

    def capture(self, argv, env, cwd, executable=None):
        return 0, b''

class CommandTest(unittest.TestCase):
    def setUp(self):
        self.workdir = os.path.realpath(tempfile.mkdtemp())
        self.ctx = RecordingContext()

    def tearDown(self):
        shutil.rmtree(self.workdir)

    def write(self, name, data):
        path = os.path.join(self.workdir, name)
        if not os.path.isdir(os.path.dirname(path)):
            os.makedirs(os.path.dirname(path))
        with open(path, 'w') as fd:
            fd.write(data)

    def run_make(self, *args):
        stdout = io.StringIO()
        stderr = io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            status = command.main(list(args), {}, self.workdir, context=self.ctx)
        return status, stdout.getvalue(), stderr.getvalue()

    def test_findmakefile(self):
        self.assertIsNone(command.findmakefile(self.workdir))
        self.write('Makefile', 'all:\n')
        self.assertEqual(command.findmakefile(self.workdir), 'Makefile')
        self.write('makefile', 'all:\n')
        self.assertEqual(command.findmakefile(self.workdir), 'makefile')
        self.write('GNUmakefile', 'all:\n')
        self.assertEqual(command.findmakefile(self.workdir), 'GNUmakefile')

    def test_default_makefile(self):
        self.write('Makefile', 'all:\n\techo hi\n')
        status, out, err = self.run_make()
        self.assertEqual(status, 0)
        self.assertEqual(self.ctx.commands, ['echo hi'])
        self.assertEqual(self.ctx.echoes, ['echo hi'])
        self.assertEqual(self.ctx.cwds, [self.workdir])

    def test_gnumakefile_preferred(self):
        self.write('Makefile', 'all:\n\techo plain\n')
        self.write('GNUmakefile', 'all:\n\techo gnu\n')
        self.run_make()
        self.assertEqual(self.ctx.commands, ['echo gnu'])

    def test_file_option(self):
        self.write('Makefile', 'all:\n\techo plain\n')
        self.write('other.mk', 'all:\n\techo other\n')
        status, out, err = self.run_make('-f', 'other.mk')
        self.assertEqual(status, 0)
        self.assertEqual(self.ctx.commands, ['echo other'])

    def test_directory_option(self):
        self.write('sub/Makefile', 'all:\n\techo sub\n')
        status, out, err = self.run_make('-C', 'sub')
        self.assertEqual(status, 0)
        self.assertEqual(self.ctx.commands, ['echo sub'])
        self.assertEqual(self.ctx.cwds, [os.path.join(self.workdir, 'sub')])

    def test_missing_directory(self):
        status, out, err = self.run_make('-C', 'nope')
        self.assertEqual(status, 2)
        self.assertTrue(err.startswith('make: *** '))

    def test_target(self):
        self.write('Makefile', 'a:\n\techo a\nb:\n\techo b\n')
        status, out, err = self.run_make('b')
        self.assertEqual(status, 0)
        self.assertEqual(self.ctx.commands, ['echo b'])

    def test_silent(self):
        self.write('Makefile', 'all:\n\techo hi\n')
        status, out, err = self.run_make('-s')
        self.assertEqual(status, 0)
        self.assertEqual(self.ctx.commands, ['echo hi'])
        self.assertEqual(self.ctx.echoes, [])

    def test_print_database(self):
        self.write('Makefile', 'X = 1\nall: dep\ndep:\n')
        status, out, err = self.run_make('-p')
        self.assertEqual(status, 0)
        self.assertIn('# Variables', out)
        self.assertIn('X =  1', out)
        self.assertIn('# Rules', out)
        self.assertIn('all: dep', out)

    def test_no_makefile(self):
        status, out, err = self.run_make()
        self.assertEqual(status, 2)
        self.assertEqual(err, 'make: *** No targets.  Stop.\n')

    def test_missing_file(self):
        status, out, err = self.run_make('-f', 'missing.mk')
        self.assertEqual(status, 2)
        self.assertIn("could not open makefile 'missing.mk'", err)

    def test_syntax_error(self):
        self.write('Makefile', 'all:\n\techo hi\nbogus\n')
        status, out, err = self.run_make()
        self.assertEqual(status, 2)
        self.assertTrue(err.startswith('make: *** Makefile:3:0: '))
        self.assertEqual(self.ctx.commands, [])

    def test_missing_prerequisite(self):
        self.write('Makefile', 'all: nothere\n\techo hi\n')
        status, out, err = self.run_make()
        self.assertEqual(status, 2)
        self.assertIn("No rule to make target 'nothere' needed by 'all'", err)

if __name__ == '__main__':
    unittest.main()
