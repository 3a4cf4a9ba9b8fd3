from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ...config.settings import StreamConfig, StreamKind
from ..base import RawEvent, RequestSpec, parse_timestamp

logger = logging.getLogger("sentx.collector.sentx")

LAUNCHPAD_ACTIVITY_PATH = "/v1/public/launchpad/activity"
MARKET_ACTIVITY_PATH = "/v1/public/market/activity"


def _extract_results(body: Any, field: str) -> List[Dict[str, Any]]:
    """取出结果数组；success 为假或结构不符合预期时视为空结果"""
    if not isinstance(body, dict):
        logger.warning("意外的 SentX 响应类型: %s", type(body).__name__)
        return []
    if not body.get("success"):
        logger.warning("SentX 响应 success=false, 字段=%s", field)
        return []
    results = body.get(field)
    if not isinstance(results, list):
        logger.warning("SentX 响应缺少结果数组: %s", field)
        return []
    return [item for item in results if isinstance(item, dict)]


class MintActivityFetcher:
    """Launchpad 铸造活动（单个 token）

    只保留 saletype == "Minted" 的记录；配置了 collection_name 时再按集合名过滤
    （同一 launchpad token 下可能混有其他集合）。
    """

    def __init__(
        self, stream_id: str, token: str, collection_name: Optional[str] = None
    ):
        self.stream_id = stream_id
        self.token = token
        self.collection_name = collection_name

    def build_request(self, limit: int) -> RequestSpec:
        return RequestSpec(
            path=LAUNCHPAD_ACTIVITY_PATH,
            params={"token": self.token, "limit": limit, "page": 1},
            stream_id=self.stream_id,
        )

    def parse(self, body: Any) -> List[RawEvent]:
        events: List[RawEvent] = []
        for activity in _extract_results(body, "response"):
            if activity.get("saletype") != "Minted":
                continue
            if (
                self.collection_name
                and activity.get("collectionName") != self.collection_name
            ):
                continue

            transaction_id = activity.get("saleTransactionId")
            timestamp = parse_timestamp(activity.get("saleDate"))
            if not transaction_id or timestamp is None:
                logger.debug("跳过缺少交易 ID 或时间的铸造记录: %s", activity)
                continue

            payload = {
                "nft_name": activity.get("nftName"),
                "serial_number": activity.get("nftSerialId"),
                "mint_cost": activity.get("salePrice"),
                "mint_cost_symbol": activity.get("salePriceSymbol"),
                "mint_date": activity.get("saleDate"),
                "minter_address": activity.get("buyerAddress"),
                "image_url": activity.get("nftImage"),
                "transaction_id": transaction_id,
            }
            events.append(
                RawEvent(id=str(transaction_id), timestamp=timestamp, payload=payload)
            )
        return events


class MarketActivityFetcher:
    """市场活动：成交 (sales) 或挂单 (listings)"""

    def __init__(self, stream_id: str, kind: StreamKind, include_hts: bool = False):
        if kind not in (StreamKind.Sales, StreamKind.Listings):
            raise ValueError(f"unsupported market activity kind: {kind}")
        self.stream_id = stream_id
        self.kind = kind
        self.include_hts = include_hts

    def build_request(self, limit: int) -> RequestSpec:
        return RequestSpec(
            path=MARKET_ACTIVITY_PATH,
            params={
                "activityFilter": "Sales" if self.kind == StreamKind.Sales else "All",
                "amount": limit,
                "page": 1,
                "hbarMarketOnly": None if self.include_hts else 1,
            },
            stream_id=self.stream_id,
        )

    def _accept(self, activity: Dict[str, Any]) -> bool:
        price = activity.get("salePrice")
        if not isinstance(price, (int, float)) or price <= 0:
            return False
        buyer = activity.get("buyerAddress")
        has_buyer = bool(buyer) and buyer != "null"
        if self.kind == StreamKind.Sales:
            return has_buyer
        return (
            bool(activity.get("sellerAddress"))
            and not has_buyer
            and activity.get("saletype") in ("Listed", "Auction")
        )

    def parse(self, body: Any) -> List[RawEvent]:
        events: List[RawEvent] = []
        for activity in _extract_results(body, "marketActivity"):
            if not self._accept(activity):
                continue
            timestamp = parse_timestamp(
                activity.get("saleDate") or activity.get("listingDate")
            )
            if timestamp is None:
                continue
            event_id = activity.get("saleTransactionId") or (
                f"{activity.get('nftTokenAddress')}-{activity.get('nftSerialId')}-"
                f"{activity.get('saleDate') or activity.get('listingDate')}"
            )
            events.append(
                RawEvent(id=str(event_id), timestamp=timestamp, payload=dict(activity))
            )
        return events


def build_fetcher(stream: StreamConfig):
    """根据流配置创建对应的 fetcher"""
    if stream.kind == StreamKind.Mints:
        if not stream.token:
            raise ValueError(f"mint stream {stream.stream_id} requires a token")
        return MintActivityFetcher(
            stream.stream_id, stream.token, stream.collection_name
        )
    return MarketActivityFetcher(stream.stream_id, stream.kind, stream.include_hts)
