"""
app.core.sanitize
~~~~~~~~~~~~~~~~~

加固档位下的文本输入清洗：去除首尾空白、截断超长输入、转义 HTML。

只在 WebSocket 闸门处调用，进入聊天核心的文本已经是清洗后的结果。
"""
from __future__ import annotations

import html

# 任何文本输入在清洗时的硬上限
_MAX_RAW_LENGTH: int = 1000


def sanitize_text(value: str) -> str:
    """清洗一段用户输入文本。"""
    return html.escape(value.strip()[:_MAX_RAW_LENGTH], quote=True)
