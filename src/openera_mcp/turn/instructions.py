"""
System instructions for an agent turn.
"""

from typing import List, Optional, Sequence

from openera_mcp.context.retriever import ContextBundle
from openera_mcp.mcp.aggregator import ServerStatusReport, ToolCatalog

ASSISTANT_NAME = "Openera Agentic"

NO_CONTEXT = "No contextual information available for this session."
NO_TOOLS = "❌ No tools available - all server connections failed"

INSTRUCTIONS = """**Instructions:**
1. Use the contextual information to provide coherent, informed responses
2. When you use tools, ALWAYS explain what you're doing before and after using them
3. Format your responses using proper markdown for better readability
4. Use headers, lists, code blocks, and tables to structure your responses
5. When presenting results from tools, organize them clearly with appropriate formatting
6. If you perform multiple operations, create a summary report at the end
7. Reference previous conversations and documents when relevant"""

TOOL_GUIDELINES = """**Tool Usage Guidelines:**
- Announce when you're about to use a tool: "I'll now use the [tool_name] tool to..."
- Explain the results: "The tool returned the following information..."
- Provide context and interpretation of the results"""

NO_TOOLS_NOTE = """⚠️ **No MCP tools are currently available.** This means the MCP server connections failed.
Please check the troubleshooting tips and ensure your MCP servers are properly configured and running."""

TOOLS_AVAILABLE_NOTE = (
    "🎉 **MCP tools are available!** You can now use the connected tools for various tasks."
)

IMAGES_NOTE = (
    "If images are provided, analyze them thoroughly and incorporate the analysis "
    "into your response using proper markdown formatting."
)


def excerpt(text: str, limit: int = 100) -> str:
    return f"{text[:limit]}..."


def describe_context(
    context: Optional[ContextBundle], summary_turns: int = 5, excerpt_chars: int = 100
) -> str:
    if context is None:
        return NO_CONTEXT

    lines = [
        f"- Recent conversations: {len(context.recent_conversations)} messages",
        f"- Available documents: {len(context.relevant_documents)} documents",
        f"- Session ID: {context.session_id}",
        "",
        "**Recent Context:**",
    ]
    lines.extend(
        f"{entry.role}: {excerpt(entry.content, excerpt_chars)}"
        for entry in context.recent_conversations[:summary_turns]
    )
    lines.append("")
    lines.append("**Relevant Documents:**")
    lines.extend(
        f"- {document.title}: {excerpt(document.content, excerpt_chars)}"
        for document in context.relevant_documents
    )
    return "\n".join(lines)


def describe_status(status: ServerStatusReport) -> str:
    if status.connected:
        tools = ", ".join(status.tools) or "none"
        return f"✅ **{status.name}**: Connected ({len(status.tools)} tools: {tools})"
    return f"❌ **{status.name}**: Failed - {status.error}"


def describe_tools(catalog: ToolCatalog) -> str:
    if not catalog:
        return NO_TOOLS
    return "\n".join(
        f"- **{name}**: {entry.description or 'No description'}"
        for name, entry in catalog.items()
    )


def build_system_prompt(
    context: Optional[ContextBundle],
    statuses: Sequence[ServerStatusReport],
    catalog: ToolCatalog,
    selected_server: Optional[str] = None,
    summary_turns: int = 5,
    excerpt_chars: int = 100,
) -> str:
    """
    Compose the instructions the model receives for one turn.

    The text always reports every server's status, including why failed
    servers failed, and says explicitly when no tools are available.
    """
    sections: List[str] = [
        f"You are {ASSISTANT_NAME}, an intelligent AI assistant with access to MCP "
        "(Model Context Protocol) tools and shared context across conversations.",
        "**🧠 Contextual Awareness:**\n"
        + describe_context(context, summary_turns, excerpt_chars),
        "**🔧 MCP Connection Status:**\n"
        + "\n".join(describe_status(status) for status in statuses),
        f"**📦 Available Tools ({len(catalog)} total):**\n" + describe_tools(catalog),
    ]
    if selected_server:
        sections.append(
            f"**🎯 User Selected Server:** {selected_server} - "
            "Focus on using tools from this server when possible."
        )
    sections.extend(
        [
            INSTRUCTIONS,
            TOOL_GUIDELINES,
            TOOLS_AVAILABLE_NOTE if catalog else NO_TOOLS_NOTE,
            IMAGES_NOTE,
        ]
    )
    return "\n\n".join(sections)
