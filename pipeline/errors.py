class AssemblyError(Exception):
    pass


class IndexQueryError(AssemblyError):
    pass


class NoAudioDataError(AssemblyError):
    """Nothing in the archive overlaps the requested window."""


class SegmentFetchError(AssemblyError):
    pass


class ToolNotFoundError(AssemblyError):
    pass


class ProcessFailedError(AssemblyError):
    def __init__(self, stage: str, returncode: int, stderr: str = ""):
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr

        message = f"{stage} exited with status {returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class AssemblyTimeoutError(AssemblyError):
    pass


class AssemblyCancelledError(AssemblyError):
    pass
