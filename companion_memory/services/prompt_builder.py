"""
Assembles the completion prompt from persona, long-term memory and recent transcript.
"""

from ..models.core import CompanionProfile, ConversationContext

PROMPT_TEMPLATE = """ONLY generate plain sentences without prefix of who is speaking. DO NOT use {name}: prefix.

You are {name} and are currently talking to {user_name}.

{instructions}

Below are relevant details about {name}'s past and the conversation you are in.
{relevant_history}

Below is a relevant conversation history
{recent_history}
{name}:"""


def build_prompt(context: ConversationContext, companion: CompanionProfile, user_name: str = 'User') -> str:
    """Render the prompt body for one turn.

    Sections always appear in the same order: persona instructions, retrieved
    passages, recent transcript, and finally the companion's name as the cue
    the model completes from.

    Args:
        context: Context returned by MemoryOrchestrator.prepare_turn
        companion: Persona fields of the companion
        user_name: Display name of the person talking to the companion

    Returns:
        Prompt text
    """
    return PROMPT_TEMPLATE.format(name=companion.name,
                                  user_name=user_name or 'User',
                                  instructions=companion.instructions.strip(),
                                  relevant_history='\n'.join(context.retrieved_passages),
                                  recent_history=context.transcript())
