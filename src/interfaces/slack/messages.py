# src/interfaces/slack/messages.py
"""User-facing texts and the "ask" modal definition."""

from src.core.modal import FieldRule

ASK_CALLBACK_ID = "ask_modal"
REGENERATE_ACTION_ID = "regenerate_answer"

TITLE_BLOCK_ID = "title_block"
TITLE_ACTION_ID = "title_input"
DETAILS_BLOCK_ID = "details_block"
DETAILS_ACTION_ID = "details_input"

ASK_RULES = [
    FieldRule(TITLE_BLOCK_ID, TITLE_ACTION_ID, "Title", min_length=5, max_length=150),
    FieldRule(
        DETAILS_BLOCK_ID, DETAILS_ACTION_ID, "Details", max_length=3000, required=False
    ),
]

EMPTY_COMMAND_TEXT = "Usage: `/ask <question>`"
MODAL_RECEIVED_TEXT = ":inbox_tray: Got it, working on *{title}*."
TRIGGER_EXPIRED_TEXT = (
    ":hourglass: That took too long to open. Please run the shortcut again."
)


def build_ask_modal(private_metadata: str = "") -> dict:
    """Return the view payload for the "ask" modal.

    Args:
        private_metadata: Channel ID to answer in, if the shortcut had one.
    """
    return {
        "type": "modal",
        "callback_id": ASK_CALLBACK_ID,
        "private_metadata": private_metadata,
        "title": {"type": "plain_text", "text": "Ask the bot"},
        "submit": {"type": "plain_text", "text": "Ask"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": [
            {
                "type": "input",
                "block_id": TITLE_BLOCK_ID,
                "label": {"type": "plain_text", "text": "Title"},
                "element": {
                    "type": "plain_text_input",
                    "action_id": TITLE_ACTION_ID,
                    "max_length": 150,
                },
            },
            {
                "type": "input",
                "block_id": DETAILS_BLOCK_ID,
                "optional": True,
                "label": {"type": "plain_text", "text": "Details"},
                "element": {
                    "type": "plain_text_input",
                    "action_id": DETAILS_ACTION_ID,
                    "multiline": True,
                },
            },
        ],
    }


def regenerate_blocks(text: str, prompt: str) -> list[dict]:
    """Reply blocks with a "Regenerate" button carrying the original prompt."""
    return [
        {"type": "section", "text": {"type": "mrkdwn", "text": text}},
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "action_id": REGENERATE_ACTION_ID,
                    "text": {"type": "plain_text", "text": "Regenerate"},
                    "value": prompt[:2000],
                }
            ],
        },
    ]
