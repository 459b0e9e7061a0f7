"""Process runtime: settings, logging, the runtime context and the CLI.

Keep this module import-light; the package root imports `runtime.config`.
"""
