SOUND_SYNTAX = (
    'You can play sound effects using @sound("sound-name", "times") syntax, '
    'where "times" is optional and defaults to 1. Example: @sound("vineboom", "3")'
)

SING_SYNTAX = (
    'You can sing songs using the @sing("song name", "artist") syntax. '
    'Use this to initiate singing a song. Example: @sing("Closer", "The Chainsmokers")'
)

AUTONOMOUS_HINT = (
    "You have decided to talk on your own without being prompted. "
    "Say something spontaneous, short, and in-character."
)

MAX_HISTORY_QUOTES = 3


def build_user_context(username: str, history: list[dict]) -> str:
    """Describe what we remember about a chatter from their stored messages."""
    if not history:
        return ""

    lines = [
        f"USER CONTEXT for {username}:",
        f"This user has chatted with you {len(history)} times.",
    ]
    if len(history) > 1:
        lines.append("Here are some of their previous messages:")
        for record in history[:MAX_HISTORY_QUOTES]:
            lines.append(f'- "{record.get("content", "")}"')
        lines.append(f"Use this context to personalize your response to {username}.")
    else:
        lines.append("This appears to be their first message.")
    return "\n".join(lines)


def build_system_prompt(
    persona: str,
    sounds: list[str] | None = None,
    autonomous: bool = False,
    username: str = "",
    user_history: list[dict] | None = None,
) -> str:
    """Build the system prompt for one reply."""
    sections = [persona.strip()]

    if sounds:
        sections.append("AVAILABLE SOUND EFFECTS:\n" + ", ".join(sounds) + "\n\n" + SOUND_SYNTAX)

    sections.append("SING FUNCTION:\n" + SING_SYNTAX)

    if autonomous:
        sections.append(AUTONOMOUS_HINT)

    user_context = build_user_context(username, user_history or [])
    if user_context:
        sections.append(user_context)

    return "\n\n".join(sections)
