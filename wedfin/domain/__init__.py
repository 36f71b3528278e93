"""Domain layer - 外部依存なしのドメインモデルとインターフェース定義"""

from wedfin.domain.errors import (
    AlreadyMemberError,
    ConfigLoadError,
    ConfirmationRequiredError,
    ContributorNotFoundError,
    EmailDeliveryError,
    ExpenseNotFoundError,
    GiftNotFoundError,
    InvitationExpiredError,
    InvitationNotFoundError,
    MemberNotFoundError,
    NotFoundError,
    PermissionDeniedError,
    PlannerError,
    ValidationError,
    WorkspaceNotFoundError,
)
from wedfin.domain.models import (
    AllocationRequest,
    CleanupOutbox,
    Contributor,
    ContributorSummary,
    CustomCategory,
    DashboardStats,
    Expense,
    Gift,
    GiftAllocation,
    GiftView,
    Invitation,
    InvitationStatus,
    MigrationResult,
    Notification,
    NotificationType,
    PaymentAllocation,
    PaymentStatus,
    Role,
    Settings,
    UserRef,
    WeddingLedger,
    Workspace,
    WorkspaceDetails,
    WorkspaceMember,
)
from wedfin.domain.ports import (
    FinanceRepository,
    InvitationEmail,
    InvitationMailer,
    InvitationRepository,
    SpreadsheetRenderer,
    UserPreferenceRepository,
    WorkspaceRepository,
    WorkspaceTransaction,
)

__all__ = [
    # Models
    "Role",
    "InvitationStatus",
    "NotificationType",
    "PaymentStatus",
    "UserRef",
    "Workspace",
    "WorkspaceMember",
    "WorkspaceDetails",
    "Invitation",
    "Notification",
    "PaymentAllocation",
    "Expense",
    "Contributor",
    "Gift",
    "GiftAllocation",
    "AllocationRequest",
    "CustomCategory",
    "Settings",
    "GiftView",
    "ContributorSummary",
    "DashboardStats",
    "WeddingLedger",
    "CleanupOutbox",
    "MigrationResult",
    # Errors
    "PlannerError",
    "ConfigLoadError",
    "NotFoundError",
    "WorkspaceNotFoundError",
    "MemberNotFoundError",
    "InvitationNotFoundError",
    "ExpenseNotFoundError",
    "ContributorNotFoundError",
    "GiftNotFoundError",
    "PermissionDeniedError",
    "InvitationExpiredError",
    "AlreadyMemberError",
    "ValidationError",
    "ConfirmationRequiredError",
    "EmailDeliveryError",
    # Ports
    "WorkspaceTransaction",
    "WorkspaceRepository",
    "InvitationRepository",
    "UserPreferenceRepository",
    "FinanceRepository",
    "InvitationEmail",
    "InvitationMailer",
    "SpreadsheetRenderer",
]
