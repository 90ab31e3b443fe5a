class NsmError(Exception):
    def __init__(self, msg):
        self.msg = msg
        super().__init__(self.msg)


class FileStoreError(NsmError):
    def __init__(self, action, path, err):
        self.path = str(path)
        super().__init__(f"Failed to {action} `{path}`: {err}")


class NotFoundError(NsmError):
    def __init__(self, path, what="file"):
        self.path = str(path)
        super().__init__(f"{what} `{path}` does not exist")


class FormatError(NsmError):
    pass


class SettingsValidationError(NsmError):
    def __init__(self, violations, path=None):
        self.violations = list(violations)
        self.path = None if path is None else str(path)
        where = f" in `{path}`" if path is not None else ""
        lines = "\n".join(f"- {v}" for v in self.violations)
        super().__init__(f"Invalid settings{where}:\n{lines}")


class ToolchainError(NsmError):
    def __init__(self, command, err, exit_code=None, stderr="", timed_out=False):
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out
        msg = (
            f"Failed to run nix toolchain command!"
            f"\nRan command: `{' '.join(self.command)}`"
            f"\nError message: {err}"
        )
        if stderr:
            msg += f"\nstderr: {stderr.strip()}"
        super().__init__(msg)
