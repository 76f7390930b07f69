#!/usr/bin/env python

"""
make.py

Reads a makefile and runs the commands needed to bring a target up to date.
"""
from lcmake import command

if __name__ == '__main__':
    command.entrypoint()
