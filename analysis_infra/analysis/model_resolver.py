"""Model selection for analysis jobs."""

from ..config import Settings
from ..db.store import SettingsStore
from ..errors import ModelNotConfiguredError, ModelNotFoundError
from ..sandbox.command import validate_provider
from ..types import AnalysisRequest, ResolvedModel


class ModelResolver:
    def __init__(self, settings: Settings, accounts: SettingsStore):
        self.settings = settings
        self.accounts = accounts

    async def resolve(self, request: AnalysisRequest) -> ResolvedModel:
        """
        Pick the model configured for the request's kind.

        Team settings win over user settings.

        Raises:
            ModelNotConfiguredError: no default model for this kind
            ModelNotFoundError: the configured model is missing, inactive or
                not allowed for this kind
            UnknownProviderError / ProviderCredentialsError: the model's
                provider cannot be run
        """
        defaults = await self.accounts.default_models(request.user_id, request.team_id)
        model_ref = defaults.for_kind(request.kind) if defaults else None
        if not model_ref:
            raise ModelNotConfiguredError(
                f"No default model configured for {request.kind.value}. "
                "Choose a model in your settings."
            )

        record = await self.accounts.resolve_model(model_ref, request.kind)
        if record is None:
            raise ModelNotFoundError(f"Model '{model_ref}' not found")

        validate_provider(self.settings, record.provider)
        return ResolvedModel(name=record.name, model_id=record.model_id, provider=record.provider)
