"""
DesignFlow
Project workflow definitions — statuses, roles and the transition table.

The transition table is the single declarative source for both the state
machine and the UI action catalogue: every record names the action id the
UI shows and the (from, to) edge it performs, so actions can never point at
an edge that does not exist.

15 transitions across 11 statuses:

    creation_pending ─request_review─▶ review_requested ─auto_progress─▶
    client_review_pending ─approve_project─▶ in_progress ─request_feedback─▶
    feedback_period ⇄ modification_in_progress ─request_completion─▶
    completion_requested ─approve_completion─▶ completed ─archive_project─▶
    archived

    cancelled is reachable from creation_pending and client_review_pending.
    designer_review_pending is a recognised status with no edges in or out.
"""

from dataclasses import dataclass, field


# ── Statuses ─────────────────────────────────────────────────────────────────

PROJECT_STATUSES = (
    "creation_pending",
    "review_requested",
    "client_review_pending",
    "designer_review_pending",
    "in_progress",
    "feedback_period",
    "modification_in_progress",
    "completion_requested",
    "completed",
    "archived",
    "cancelled",
)

INITIAL_STATUS = "creation_pending"
TERMINAL_STATUSES = frozenset({"archived", "cancelled"})

# Completion metadata only lives while the project sits in one of these
COMPLETION_STATUSES = frozenset({"completion_requested", "completed"})

# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_CLIENT = "client"
ROLE_DESIGNER = "designer"
ROLE_BOTH = "both"

ACTING_ROLES = frozenset({ROLE_CLIENT, ROLE_DESIGNER})

# ── Validation rules ─────────────────────────────────────────────────────────

RULE_DRAFT_FILES = "draft_files_required"
RULE_FINAL_DELIVERABLES = "final_deliverables_required"
RULE_FEEDBACK_RECEIVED = "feedback_received"
RULE_MODIFICATION_AVAILABLE = "modification_count_available"

VALIDATION_RULE_MESSAGES = {
    RULE_DRAFT_FILES: "Draft files must be uploaded first.",
    RULE_FINAL_DELIVERABLES: "Final deliverables must be uploaded first.",
    RULE_FEEDBACK_RECEIVED: "Client feedback is required.",
    RULE_MODIFICATION_AVAILABLE: "No modifications remaining.",
}


@dataclass(frozen=True)
class WorkflowTransition:
    """One declared, role-gated edge of the project lifecycle."""
    action_id: str
    from_status: str
    to_status: str
    label: str
    description: str
    required_role: str
    validation_rules: tuple[str, ...] = ()
    auto_progress: bool = False
    requires_confirmation: bool = False
    confirmation_message: str | None = None
    icon: str = ""
    variant: str = "primary"

    def allows(self, acting_role: str) -> bool:
        return self.required_role == ROLE_BOTH or self.required_role == acting_role

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "from": self.from_status,
            "to": self.to_status,
            "label": self.label,
            "description": self.description,
            "required_role": self.required_role,
            "validation_rules": list(self.validation_rules),
            "auto_progress": self.auto_progress,
            "requires_confirmation": self.requires_confirmation,
            "confirmation_message": self.confirmation_message,
        }

    def to_action(self) -> dict:
        return {
            "id": self.action_id,
            "label": self.label,
            "description": self.description,
            "icon": self.icon,
            "variant": self.variant,
            "target_status": self.to_status,
            "requires_confirmation": self.requires_confirmation,
            "confirmation_message": self.confirmation_message,
        }


WORKFLOW_TRANSITIONS: tuple[WorkflowTransition, ...] = (
    # Creation
    WorkflowTransition(
        "request_review", "creation_pending", "review_requested",
        "Request review", "Ask the client to approve the project",
        ROLE_DESIGNER, icon="📋",
    ),
    WorkflowTransition(
        "cancel_project", "creation_pending", "cancelled",
        "Cancel project", "Cancel the project before it starts",
        ROLE_BOTH, icon="❌", variant="error",
        requires_confirmation=True,
        confirmation_message="Do you really want to cancel this project?",
    ),
    # Review requested
    WorkflowTransition(
        "auto_progress", "review_requested", "client_review_pending",
        "Awaiting approval", "Move the project to client review",
        ROLE_DESIGNER, auto_progress=True, icon="⏳", variant="secondary",
    ),
    # Client review
    WorkflowTransition(
        "approve_project", "client_review_pending", "in_progress",
        "Approve project", "Approve the project and start the work",
        ROLE_CLIENT, icon="✅", variant="success",
    ),
    WorkflowTransition(
        "request_modification", "client_review_pending", "creation_pending",
        "Request changes", "Ask for changes to the project proposal",
        ROLE_CLIENT, icon="✏️", variant="warning",
    ),
    WorkflowTransition(
        "reject_project", "client_review_pending", "cancelled",
        "Reject project", "Reject the project",
        ROLE_CLIENT, icon="❌", variant="error",
        requires_confirmation=True,
        confirmation_message="Do you want to reject this project?",
    ),
    # In progress
    WorkflowTransition(
        "request_feedback", "in_progress", "feedback_period",
        "Request feedback", "Submit the draft and ask for feedback",
        ROLE_DESIGNER, validation_rules=(RULE_DRAFT_FILES,), icon="💬",
    ),
    WorkflowTransition(
        "request_completion", "in_progress", "completion_requested",
        "Request completion", "Ask the client to accept the project as complete",
        ROLE_DESIGNER, validation_rules=(RULE_FINAL_DELIVERABLES,), icon="🎯", variant="success",
    ),
    # Feedback period
    WorkflowTransition(
        "start_modification", "feedback_period", "modification_in_progress",
        "Start modification", "Start revising the design from the feedback",
        ROLE_DESIGNER, validation_rules=(RULE_FEEDBACK_RECEIVED,), icon="🔧", variant="warning",
    ),
    WorkflowTransition(
        "request_completion", "feedback_period", "completion_requested",
        "Request completion", "Request completion without further changes",
        ROLE_DESIGNER, icon="🎯", variant="success",
    ),
    # Modification in progress
    WorkflowTransition(
        "request_feedback", "modification_in_progress", "feedback_period",
        "Request re-review", "Ask the client to review the revised design",
        ROLE_DESIGNER, icon="🔄",
    ),
    WorkflowTransition(
        "request_completion", "modification_in_progress", "completion_requested",
        "Request completion", "Request completion once the revision is done",
        ROLE_DESIGNER, icon="✨", variant="success",
    ),
    # Completion requested
    WorkflowTransition(
        "approve_completion", "completion_requested", "completed",
        "Approve completion", "Accept the project as complete",
        ROLE_CLIENT, icon="🎉", variant="success",
    ),
    WorkflowTransition(
        "request_more_changes", "completion_requested", "modification_in_progress",
        "Request more changes", "Ask for additional modifications",
        ROLE_CLIENT, validation_rules=(RULE_MODIFICATION_AVAILABLE,), icon="📝", variant="warning",
    ),
    # Completed
    WorkflowTransition(
        "archive_project", "completed", "archived",
        "Archive", "Archive the completed project",
        ROLE_BOTH, icon="📦", variant="secondary",
    ),
)

TRANSITIONS_BY_EDGE: dict[tuple[str, str], WorkflowTransition] = {
    (t.from_status, t.to_status): t for t in WORKFLOW_TRANSITIONS
}

# ── Progress ─────────────────────────────────────────────────────────────────

BASE_PROGRESS = {
    "creation_pending": 5,
    "review_requested": 10,
    "client_review_pending": 15,
    "designer_review_pending": 15,
    "in_progress": 30,
    "feedback_period": 60,
    "modification_in_progress": 75,
    "completion_requested": 90,
    "completed": 100,
    "archived": 100,
    "cancelled": 0,
}

# ── Display metadata ─────────────────────────────────────────────────────────

STATUS_DISPLAY_INFO = {
    "creation_pending": {
        "label": "Awaiting creation",
        "description": "The project is waiting to be submitted",
        "color": "neutral",
        "icon": "⏳",
    },
    "review_requested": {
        "label": "Review requested",
        "description": "A client review has been requested",
        "color": "warning",
        "icon": "📋",
    },
    "client_review_pending": {
        "label": "Awaiting client review",
        "description": "Waiting for the client's approval",
        "color": "warning",
        "icon": "👤",
    },
    "designer_review_pending": {
        "label": "Awaiting designer review",
        "description": "Waiting for the designer's confirmation",
        "color": "info",
        "icon": "🎨",
    },
    "in_progress": {
        "label": "In progress",
        "description": "The project is in progress",
        "color": "primary",
        "icon": "🚀",
    },
    "feedback_period": {
        "label": "Feedback period",
        "description": "Client feedback is being collected and reviewed",
        "color": "accent",
        "icon": "💬",
    },
    "modification_in_progress": {
        "label": "Modification in progress",
        "description": "Feedback is being applied to the design",
        "color": "secondary",
        "icon": "🔧",
    },
    "completion_requested": {
        "label": "Awaiting completion approval",
        "description": "Waiting for the client to accept the project",
        "color": "success",
        "icon": "🎯",
    },
    "completed": {
        "label": "Completed",
        "description": "The project was completed successfully",
        "color": "success",
        "icon": "🎉",
    },
    "archived": {
        "label": "Archived",
        "description": "The completed project has been archived",
        "color": "neutral",
        "icon": "📦",
    },
    "cancelled": {
        "label": "Cancelled",
        "description": "The project was cancelled",
        "color": "error",
        "icon": "❌",
    },
}


@dataclass
class ValidationContext:
    """Facts the validation rules are evaluated against."""
    has_draft_files: bool = False
    has_final_deliverables: bool = False
    has_feedback: bool = False
    remaining_modifications: int = 0
    sources: dict = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict | None) -> "ValidationContext":
        data = data or {}

        def pick(snake, camel, default):
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        try:
            remaining = int(pick("remaining_modifications", "remainingModifications", 0) or 0)
        except (TypeError, ValueError):
            remaining = 0
        return cls(
            has_draft_files=bool(pick("has_draft_files", "hasDraftFiles", False)),
            has_final_deliverables=bool(pick("has_final_deliverables", "hasFinalDeliverables", False)),
            has_feedback=bool(pick("has_feedback", "hasFeedback", False)),
            remaining_modifications=remaining,
            sources={k: "caller" for k in (
                "has_draft_files", "has_final_deliverables", "has_feedback", "remaining_modifications",
            )},
        )

    def check(self, rule: str) -> bool:
        if rule == RULE_DRAFT_FILES:
            return self.has_draft_files
        if rule == RULE_FINAL_DELIVERABLES:
            return self.has_final_deliverables
        if rule == RULE_FEEDBACK_RECEIVED:
            return self.has_feedback
        if rule == RULE_MODIFICATION_AVAILABLE:
            return self.remaining_modifications > 0
        raise ValueError(f"Unknown validation rule: {rule}")

    def to_dict(self) -> dict:
        return {
            "has_draft_files": self.has_draft_files,
            "has_final_deliverables": self.has_final_deliverables,
            "has_feedback": self.has_feedback,
            "remaining_modifications": self.remaining_modifications,
            "sources": dict(self.sources),
        }
