from __future__ import annotations

from tiny_chatbot.tool import Tool, ToolDefinition, to_definition
from tiny_chatbot.tools.cat_tool import CatTool
from tiny_chatbot.tools.echo_tool import EchoTool
from tiny_chatbot.tools.head_tail_tools import HeadTool, TailTool
from tiny_chatbot.tools.ls_tool import LsTool
from tiny_chatbot.tools.pwd_tool import PwdTool
from tiny_chatbot.tools.search_tools import GrepTool, RipgrepTool
from tiny_chatbot.tools.wc_tool import WcTool
from tiny_chatbot.tools.which_tool import WhichTool


def get_all() -> list[Tool]:
    """The fixed inspection tool manifest, one tool per approved command."""
    return [
        CatTool(),
        LsTool(),
        GrepTool(),
        RipgrepTool(),
        HeadTool(),
        TailTool(),
        PwdTool(),
        EchoTool(),
        WcTool(),
        WhichTool(),
    ]


def to_definitions(tools: list[Tool]) -> list[ToolDefinition]:
    return [to_definition(t) for t in tools]
