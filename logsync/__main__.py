"""
CLI entry point, when used as a module: `python -m logsync`.

Useful for debugging in the IDEs (use the start-mode "Module", module "logsync").
"""
from logsync import cli

if __name__ == '__main__':
    cli.main()
