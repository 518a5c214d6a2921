"""Exception hierarchy for the analysis service."""


class AnalysisError(Exception):
    """Base class for errors raised while preparing or running an analysis."""

    pass


class ModelNotConfiguredError(AnalysisError):
    """No default model is configured for the requested analysis kind."""

    pass


class ModelNotFoundError(AnalysisError):
    """The configured model id does not reference a usable model record."""

    pass


class UnknownProviderError(AnalysisError):
    """The model's provider has no credential strategy."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unsupported model provider '{provider}'. Expected one of: google, vertex, bedrock"
        )
        self.provider = provider


class RepositoryAuthError(AnalysisError):
    """Repository access could not be authenticated."""

    pass


class FinalizeError(AnalysisError):
    """Writing the final job record failed."""

    pass


class WebhookSignatureError(Exception):
    """The webhook payload signature is missing or does not match."""

    pass


class ProviderCredentialsError(AnalysisError):
    """Credentials required by the model's provider are not configured."""

    pass
