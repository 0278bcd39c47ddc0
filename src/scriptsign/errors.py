class ScriptSignError(Exception):
    """Base class for every error raised by scriptsign."""


class PolicyStoreError(ScriptSignError):
    pass


class CertificateStoreError(ScriptSignError):
    pass


class SigningError(ScriptSignError):
    pass


class ConsentDeclined(ScriptSignError):
    pass
