class RankEngineError(Exception):
    """Base class for errors raised by the payment and rank engine."""


class SignatureInvalid(RankEngineError):
    pass


class ProviderNotActive(RankEngineError):
    def __init__(self, provider: str, active: str):
        super().__init__(f"{provider} payments not enabled (active provider: {active}).")
        self.provider = provider
        self.active = active


class MalformedPayload(RankEngineError, ValueError):
    pass


class ProviderUnavailable(RankEngineError):
    """An outbound call to the payment provider failed; the webhook should be retried."""


class PersistenceFailure(RankEngineError):
    pass


class UserNotFound(RankEngineError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found.")
        self.user_id = user_id


class RankNotFound(RankEngineError):
    def __init__(self, rank_id: str):
        super().__init__(f"Rank {rank_id} not found.")
        self.rank_id = rank_id
