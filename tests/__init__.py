"""
Test package for the refinery.

- unit/: tests for individual components
- cli/: command line tests
- integration/: merge queue runs against real git repositories
"""
