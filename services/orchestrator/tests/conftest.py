"""测试公共配置：日志目录与数据库指向临时位置，并提供桩对象。"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="paperchat-tests-"))
os.environ.setdefault("LOG_DIR", str(_TMP / "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'paperchat.db'}")
os.environ.setdefault("AZURE_OPENAI_ENDPOINT", "")
os.environ.setdefault("AZURE_OPENAI_API_KEY", "")
