from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..events.models import StreamEvent, Topic

logger = logging.getLogger("sentx.consumer.notifier")


def describe_event(event: StreamEvent) -> str:
    """生成一行事件摘要"""
    p = event.payload
    if event.topic == Topic.Mints:
        return "{name} #{serial} minted for {cost} {symbol} by {who}".format(
            name=p.get("nft_name") or "NFT",
            serial=p.get("serial_number", "?"),
            cost=p.get("mint_cost", "?"),
            symbol=p.get("mint_cost_symbol") or "HBAR",
            who=p.get("minter_address") or "unknown",
        )
    # 市场活动保留原始字段
    sold = event.topic == Topic.Sales
    return "{name} #{serial} {verb} for {price} {symbol} {prep} {who}".format(
        name=p.get("nftName") or "NFT",
        serial=p.get("nftSerialId", "?"),
        verb="sold" if sold else "listed",
        price=p.get("salePrice", "?"),
        symbol=p.get("salePriceSymbol") or "HBAR",
        prep="to" if sold else "by",
        who=(p.get("buyerAddress") if sold else p.get("sellerAddress")) or "unknown",
    )


class LogNotifier:
    """默认下游处理器：把事件写入日志

    聊天消息投递不在本服务范围内，这里只保留最近若干条事件供状态接口查看。
    """

    def __init__(self, keep_last: int = 50, logger_: Optional[logging.Logger] = None):
        self.keep_last = keep_last
        self.logger = logger_ or logger
        self._recent: List[Dict[str, Any]] = []
        self.notified = 0

    def __call__(self, event: StreamEvent) -> None:
        self.notified += 1
        tag = "[replay] " if event.is_replay else ""
        self.logger.info("%s%s: %s", tag, event.stream_id, describe_event(event))

        self._recent.append(event.to_dict())
        if len(self._recent) > self.keep_last:
            del self._recent[: len(self._recent) - self.keep_last]

    def recent(self) -> List[Dict[str, Any]]:
        return list(self._recent)
