"""ドメイン固有の例外クラス"""


class PlannerError(Exception):
    """Wedding Finance Planner の基底例外"""

    pass


class ConfigLoadError(PlannerError):
    """設定読み込みエラー"""

    pass


# ── 存在しないリソース ────────────────────────────────────────────────────────


class NotFoundError(PlannerError):
    """対象のドキュメントが存在しない"""

    pass


class WorkspaceNotFoundError(NotFoundError):
    pass


class MemberNotFoundError(NotFoundError):
    pass


class InvitationNotFoundError(NotFoundError):
    """トークン不明・使用済み・取消済みの招待"""

    pass


class ExpenseNotFoundError(NotFoundError):
    pass


class ContributorNotFoundError(NotFoundError):
    pass


class GiftNotFoundError(NotFoundError):
    pass


class CategoryNotFoundError(NotFoundError):
    pass


# ── 権限・状態 ────────────────────────────────────────────────────────────────


class PermissionDeniedError(PlannerError):
    """ロール不足（owner 専用操作、viewer の書き込み等）"""

    pass


class InvitationExpiredError(PlannerError):
    """招待の有効期限切れ（ステータスは expired に遷移済み）"""

    pass


class AlreadyMemberError(PlannerError):
    """招待先のメールアドレスが既にメンバー"""

    pass


class ValidationError(PlannerError):
    """入力値の不整合（金額、割当合計など）"""

    pass


class EmailDeliveryError(PlannerError):
    """メール送信エラー（SendGrid API等）"""

    pass


class ConfirmationRequiredError(PlannerError):
    """超過支払いなど、利用者の明示的な確認が必要な操作"""

    def __init__(self, codes: list[str]) -> None:
        super().__init__(", ".join(codes))
        self.codes = codes
