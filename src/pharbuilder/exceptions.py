class BuildError(Exception):
    pass


class ConfigurationError(BuildError):
    pass


class UnreadableManifestError(ConfigurationError):
    pass


class MissingLockFileError(ConfigurationError):
    pass


class UnreadableLockFileError(ConfigurationError):
    pass


class AutoloadRewriteError(BuildError):
    pass


class SourceNotFoundError(BuildError):
    pass


class ArchiveError(BuildError):
    pass


class ArchiveCreateError(ArchiveError):
    pass


class ArchiveWriteError(ArchiveError):
    pass


class ArchiveFinalizedError(ArchiveError):
    pass


class InvalidStubError(ArchiveError):
    pass


class SigningError(BuildError):
    pass


class VerificationError(Exception):
    pass


class InvalidArchiveError(VerificationError):
    pass


class SignatureVerificationError(VerificationError):
    pass
