
"""Bootstrap do container de DI (kink) do agente vendedor."""
from kink import di
from .settings import Settings
from .logging import configure_logging
from .db import create_session_factory
from .llm_client import LLMClient
from .pacing import PacingPolicy
from .prompting import PromptBuilder
from ..connectors.whatsapp.green_api_adapter import GreenApiAdapter
from ..domain.services.conversation_engine import ConversationEngine
from ..domain.services.delivery_status import DeliveryStatusTracker
from ..domain.services.ingestion import WebhookIngestion
from ..domain.services.outbound_dispatcher import OutboundDispatcher
from ..domain.services.policy import LLMConversationPolicy
from ..ports.interfaces import ConversationPolicy, GatewayPort
from ..repo.store import ConversationStore
from ..tasks.relance_jobs import RelanceJobs
from ..tasks.scheduler import RelanceScheduler

def bootstrap_di(settings: Settings | None = None, policy: ConversationPolicy | None = None,
                 gateway: GatewayPort | None = None, pacing: PacingPolicy | None = None,
                 create_schema: bool = False) -> None:
    """Registra todos os componentes no container.

    `policy`, `gateway` e `pacing` podem ser substituídos (testes, outro provedor).
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)
    di[Settings] = settings
    session_factory = create_session_factory(settings.database_url, create_schema=create_schema)
    di["session_factory"] = session_factory

    store = ConversationStore(session_factory, settings)
    di[ConversationStore] = store

    gateway = gateway or GreenApiAdapter(settings)
    di[GatewayPort] = gateway
    if isinstance(gateway, GreenApiAdapter):
        gateway.configure()
        di[GreenApiAdapter] = gateway

    pacing = pacing or PacingPolicy.from_settings(settings)
    di[PacingPolicy] = pacing

    if policy is None:
        di[LLMClient] = LLMClient(settings)
        di[PromptBuilder] = PromptBuilder()
        policy = LLMConversationPolicy(di[LLMClient], di[PromptBuilder])
    di[ConversationPolicy] = policy

    dispatcher = OutboundDispatcher(store, gateway, pacing, max_workers=settings.dispatcher_workers)
    di[OutboundDispatcher] = dispatcher
    engine = ConversationEngine(store, policy, dispatcher, gateway, settings)
    di[ConversationEngine] = engine
    di[WebhookIngestion] = WebhookIngestion(gateway, store, engine)
    di[DeliveryStatusTracker] = DeliveryStatusTracker(store)

    jobs = RelanceJobs(store, policy, dispatcher, pacing, settings)
    di[RelanceJobs] = jobs
    di[RelanceScheduler] = RelanceScheduler(jobs, settings)
