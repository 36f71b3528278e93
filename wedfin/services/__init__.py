"""Services layer - ビジネスロジック"""

from wedfin.services.invitation_service import InvitationService, SentInvitation
from wedfin.services.migration_service import MigrationService
from wedfin.services.state import LedgerCache, WorkspaceDirectory
from wedfin.services.subscriptions import SubscriptionState, SupervisedSubscription
from wedfin.services.wedding_service import PaymentResult, WeddingService
from wedfin.services.workspace_service import WorkspaceService

__all__ = [
    "WorkspaceService",
    "InvitationService",
    "SentInvitation",
    "WeddingService",
    "PaymentResult",
    "MigrationService",
    "SupervisedSubscription",
    "SubscriptionState",
    "WorkspaceDirectory",
    "LedgerCache",
]
