CONTRACT_VERSION = "1.0.0"

COMMAND_INTENTS = (
    "start_propose",
    "start_reaction",
    "start_amend",
    "start_confirm",
    "reconfirm",
    "mutate_session",
    "select_tags",
    "change_page",
    "burn_tag",
    "add_help_from_character",
    "set_might",
    "set_justification",
    "set_narration_link",
    "end_session",
    "submit",
    "amend",
    "confirm",
    "execute",
)

QUERY_INTENTS = (
    "get_session",
    "calculate_power",
    "list_rolls_by_scene",
    "list_rolls_by_status",
)

CONTRACT_DTO_TYPES = (
    "WorkflowResult",
    "FailureReason",
    "ExecutionReport",
    "PowerBreakdown",
)
