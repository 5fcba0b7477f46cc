"""Database models."""

from salonops.persistence.models.access_control import Permission, PlatformRole, RolePermission, UserRole
from salonops.persistence.models.client import Client, ClientStatus
from salonops.persistence.models.client_balance import ClientBalance, ClientLoyaltyPoints
from salonops.persistence.models.client_merge_log import ClientMergeLog, ClientMergeUndo
from salonops.persistence.models.dependents import (
    Appointment,
    ArchivedAppointment,
    BalanceTransaction,
    ClientAutomationLog,
    ClientEmailPreference,
    ClientFeedbackResponse,
    ClientFormSignature,
    ClientNote,
    ClientPortalToken,
    EmailSendLog,
    KioskAnalytics,
    PhorestAppointment,
    PointsTransaction,
    PromotionRedemption,
    ReengagementOutreach,
    RefundRecord,
    ServiceEmailQueue,
    Voucher,
)
from salonops.persistence.models.organization import Organization, User

__all__ = [
    "Organization",
    "User",
    "Permission",
    "RolePermission",
    "UserRole",
    "PlatformRole",
    "Client",
    "ClientStatus",
    "ClientBalance",
    "ClientLoyaltyPoints",
    "ClientMergeLog",
    "ClientMergeUndo",
    "Appointment",
    "ArchivedAppointment",
    "BalanceTransaction",
    "ClientAutomationLog",
    "ClientEmailPreference",
    "ClientFeedbackResponse",
    "ClientFormSignature",
    "ClientNote",
    "ClientPortalToken",
    "EmailSendLog",
    "KioskAnalytics",
    "PhorestAppointment",
    "PointsTransaction",
    "PromotionRedemption",
    "ReengagementOutreach",
    "RefundRecord",
    "ServiceEmailQueue",
    "Voucher",
]
