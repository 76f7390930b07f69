#!/usr/bin/env python

import sys
import lcmake.engine

for f in sys.argv[1:]:
    print("Parsing %s" % f)
    m = lcmake.engine.parsefile(f)
    print(m)
