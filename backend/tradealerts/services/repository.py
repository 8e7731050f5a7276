from __future__ import annotations

from typing import Any

from supabase import Client

from tradealerts.services.database import to_iso, utc_now


class AlertsRepository:
    """Rows the mobile app owns: alerts, push devices, strategy groups and the signals they receive."""

    def __init__(self, client: Client) -> None:
        self._client = client

    def list_alerts(self, user_id: str, symbol: str | None = None) -> list[dict[str, Any]]:
        query = self._client.table("alerts").select("*").eq("user_id", user_id)
        if symbol:
            query = query.eq("symbol", symbol.upper())
        data = query.order("created_at", desc=True).execute().data
        return data if isinstance(data, list) else []

    def create_alert(
        self,
        user_id: str,
        *,
        symbol: str,
        price: float,
        condition: str,
        message: str | None = None,
        repeat: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        payload = {
            "user_id": user_id,
            "symbol": symbol.upper(),
            "price": price,
            "condition": condition,
            "message": message,
            "repeat": repeat,
            "is_active": is_active,
        }
        data = self._client.table("alerts").insert(payload).execute().data
        if not data:
            raise RuntimeError("Alert insert returned no row.")
        return data[0]

    def update_alert(self, user_id: str, alert_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        payload = {key: value for key, value in updates.items() if value is not None}
        if "symbol" in payload:
            payload["symbol"] = str(payload["symbol"]).upper()
        if not payload:
            rows = self._client.table("alerts").select("*").eq("id", alert_id).eq("user_id", user_id).execute().data
            return rows[0] if rows else None
        payload["updated_at"] = to_iso(utc_now())
        data = self._client.table("alerts").update(payload).eq("id", alert_id).eq("user_id", user_id).execute().data
        return data[0] if data else None

    def delete_alert(self, user_id: str, alert_id: str) -> bool:
        data = self._client.table("alerts").delete().eq("id", alert_id).eq("user_id", user_id).execute().data
        return bool(data)

    def list_alert_events(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        data = (
            self._client.table("alert_events")
            .select("*")
            .eq("user_id", user_id)
            .order("fired_at", desc=True)
            .limit(limit)
            .execute()
            .data
        )
        return data if isinstance(data, list) else []

    def register_device(
        self,
        user_id: str,
        expo_push_token: str,
        *,
        platform: str | None = None,
        app_version: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "user_id": user_id,
            "expo_push_token": expo_push_token,
            "platform": platform,
            "app_version": app_version,
        }
        data = self._client.table("user_devices").upsert(payload, on_conflict="user_id,expo_push_token").execute().data
        return data[0] if data else payload

    def create_group(self, user_id: str, name: str, description: str | None = None) -> dict[str, Any]:
        data = (
            self._client.table("strategy_groups")
            .insert({"name": name, "description": description, "owner_user_id": user_id})
            .execute()
            .data
        )
        if not data:
            raise RuntimeError("Strategy group insert returned no row.")
        group = data[0]
        self._client.table("strategy_group_members").insert(
            {"group_id": group["id"], "user_id": user_id, "role": "owner"}
        ).execute()
        return group

    def get_group(self, group_id: str) -> dict[str, Any] | None:
        data = self._client.table("strategy_groups").select("*").eq("id", group_id).limit(1).execute().data
        return data[0] if data else None

    def subscribe_to_group(self, user_id: str, group_id: str) -> dict[str, Any]:
        existing = (
            self._client.table("strategy_group_members")
            .select("*")
            .eq("group_id", group_id)
            .eq("user_id", user_id)
            .execute()
            .data
        )
        if existing:
            return existing[0]
        data = (
            self._client.table("strategy_group_members")
            .insert({"group_id": group_id, "user_id": user_id, "role": "member"})
            .execute()
            .data
        )
        if not data:
            raise RuntimeError("Strategy group membership insert returned no row.")
        return data[0]

    def list_groups(self, user_id: str) -> list[dict[str, Any]]:
        memberships = self._client.table("strategy_group_members").select("group_id").eq("user_id", user_id).execute().data
        group_ids = [row["group_id"] for row in memberships or [] if row.get("group_id")]
        if not group_ids:
            return []
        data = (
            self._client.table("strategy_groups")
            .select("id, name, description, owner_user_id, created_at")
            .in_("id", group_ids)
            .execute()
            .data
        )
        return data if isinstance(data, list) else []

    def list_signals(self, user_id: str, symbol: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        query = self._client.table("trade_signals").select("*").eq("user_id", user_id)
        if symbol:
            query = query.eq("symbol", symbol.upper())
        data = query.order("created_at", desc=True).limit(limit).execute().data
        return data if isinstance(data, list) else []
