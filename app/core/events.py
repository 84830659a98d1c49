from __future__ import annotations

from typing import Literal

OutboundType = Literal[
    "gameCreated",
    "initialState",
    "gameStarted",
    "playerJoined",
    "gameStateUpdate",
    "segmentAdvanced",
    "playerSubmitted",
    "playerDisconnected",
    "playerReconnected",
    "playerPermanentlyDisconnected",
    "gameOver",
    "error",
]
