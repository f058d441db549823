# errors.py
# Error taxonomy. Deployment-path errors abort a run; verification-path errors
# are turned into a Failed/Skipped outcome by chainpublish.explorer.


class PublishError(Exception):
    """Base class for every error raised by chainpublish."""


# ---- deployment path --------------------------------------------------------

class ArtifactReadError(PublishError):
    pass


class LinkError(PublishError):
    pass


class MissingLibraryArtifactError(LinkError):
    def __init__(self, library: str, path):
        self.library = library
        self.path = path
        super().__init__(f"artifact for library {library} not found at {path}")


class LibraryCycleError(LinkError):
    def __init__(self, chain):
        self.chain = list(chain)
        super().__init__("cyclic library dependency: " + " -> ".join(self.chain))


class InvalidBytecodeError(LinkError):
    pass


class ChainConfigError(PublishError):
    pass


class BroadcastError(PublishError):
    pass


class DeploymentFailedError(PublishError):
    pass


# ---- verification path ------------------------------------------------------

class MetadataMissingError(PublishError):
    pass


class SourceFileMissingError(PublishError):
    pass


class VerificationTransportError(PublishError):
    pass


class VerificationTimeoutError(PublishError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"timed out after {attempts} attempts")


# ---- peripheral tooling -----------------------------------------------------

class ToolchainError(PublishError):
    pass


class IpfsError(PublishError):
    pass


class ReceiptError(PublishError):
    pass
