"""Streamlit dashboard for the Intra Companion local backend."""

from __future__ import annotations

import datetime
import os
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

# ==========================================
# Configuration & Constants
# ==========================================
# Point this to the local FastAPI server
API_BASE_URL = os.getenv("COMPANION_API_URL", "http://127.0.0.1:8000")

st.set_page_config(
    page_title="Intra Companion",
    page_icon="🕒",
    layout="wide",
)

# ==========================================
# API Helper Functions
# ==========================================
def _error_detail(response: requests.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail or f"HTTP {response.status_code}")


def fetch_logtime(login: str, days: int) -> Optional[Dict[str, Any]]:
    """Calls the backend log time endpoint."""
    try:
        response = requests.get(
            f"{API_BASE_URL}/users/{login}/logtime",
            params={"days": days},
            timeout=60,
        )
        if not response.ok:
            st.error(f"Log time failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def fetch_host(login: str) -> Optional[str]:
    try:
        response = requests.get(f"{API_BASE_URL}/users/{login}/host", timeout=30)
        response.raise_for_status()
        return response.json().get("host")
    except requests.exceptions.RequestException:
        return None


def fetch_day_slots(day: datetime.date) -> Optional[Dict[str, Any]]:
    """Calls the backend merged-slots endpoint."""
    try:
        response = requests.get(
            f"{API_BASE_URL}/me/slots",
            params={"day": day.isoformat()},
            timeout=30,
        )
        if not response.ok:
            st.error(f"Slots failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def delete_slots(ids: List[int]) -> bool:
    try:
        response = requests.delete(
            f"{API_BASE_URL}/me/slots",
            json={"ids": ids},
            timeout=60,
        )
        if not response.ok:
            st.error(f"Delete failed: {_error_detail(response)}")
            return False
        return True
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return False


def fetch_upcoming() -> Optional[Dict[str, Any]]:
    try:
        response = requests.get(f"{API_BASE_URL}/me/evaluations/upcoming", timeout=60)
        if not response.ok:
            st.error(f"Upcoming evaluations failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def fetch_profile(login: str, refresh: bool) -> Optional[Dict[str, Any]]:
    """Reads the cached profile, or runs a refresh cycle first."""
    try:
        if refresh:
            response = requests.post(f"{API_BASE_URL}/users/{login}/profile/refresh", timeout=120)
        else:
            response = requests.get(f"{API_BASE_URL}/users/{login}/profile", timeout=30)
        if not response.ok:
            st.error(f"Profile failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def fetch_campus(campus_id: int, refresh: bool) -> Optional[Dict[str, Any]]:
    """Reads the campus dashboard, or forces a new fetch first."""
    try:
        if refresh:
            response = requests.post(f"{API_BASE_URL}/campus/{campus_id}/refresh", timeout=120)
        else:
            response = requests.get(f"{API_BASE_URL}/campus/{campus_id}", timeout=120)
        if not response.ok:
            st.error(f"Campus failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


def search_users(query: str, campus_id: Optional[int]) -> Optional[Dict[str, Any]]:
    params: Dict[str, Any] = {"q": query}
    if campus_id:
        params["campus_id"] = campus_id
    try:
        response = requests.get(f"{API_BASE_URL}/search/users", params=params, timeout=30)
        if not response.ok:
            st.error(f"Search failed: {_error_detail(response)}")
            return None
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Backend connection failed: {e}")
        return None


# ==========================================
# UI Page Functions
# ==========================================
def render_logtime_page() -> None:
    st.header("🕒 Log Time")
    st.markdown("Hours spent at campus workstations, per day.")

    col1, col2 = st.columns(2)
    with col1:
        login = st.text_input("Login", value=os.getenv("INTRA_LOGIN", ""))
    with col2:
        days = st.slider("Days", min_value=1, max_value=60, value=14)

    if st.button("Load Log Time", type="primary") and login.strip():
        with st.spinner("Collecting sessions..."):
            result = fetch_logtime(login.strip(), days)
            host = fetch_host(login.strip())

        if result:
            metric_col1, metric_col2, metric_col3 = st.columns(3)
            metric_col1.metric("Total", result.get("total_label", "0 h"))
            metric_col2.metric("Daily Average", f"{result.get('average_hours', 0.0):.2f} h")
            metric_col3.metric("Current Host", host or "offline")

            df = pd.DataFrame(result.get("buckets", []))
            if not df.empty:
                df["day"] = pd.to_datetime(df["day"])
                st.bar_chart(df.set_index("day")["hours"])
                st.dataframe(df[["day", "label"]], use_container_width=True)
            st.caption(f"Source: {result.get('source')}")


def render_slots_page() -> None:
    st.header("📅 Evaluation Slots")

    day = st.date_input("Day", datetime.date.today())
    result = fetch_day_slots(day)
    if not result:
        return

    slots = result.get("slots", [])
    if not slots:
        st.info("No slots opened for this day.")
        return

    rows = [
        {
            "begin": slot["begin_at"],
            "end": slot["end_at"],
            "state": ", ".join(slot.get("badges", [])),
            "ids": slot["ids"],
        }
        for slot in slots
    ]
    st.dataframe(pd.DataFrame(rows), use_container_width=True)

    free = [slot for slot in slots if not slot.get("is_reserved")]
    if free:
        labels = {f"{slot['begin_at']} → {slot['end_at']}": slot["ids"] for slot in free}
        choice = st.selectbox("Free range to delete", list(labels))
        if st.button("Delete Range"):
            if delete_slots(labels[choice]):
                st.success("Slots deleted.")

    st.write("### Upcoming Evaluations")
    upcoming = fetch_upcoming()
    if upcoming and upcoming.get("evaluations"):
        st.dataframe(pd.DataFrame(upcoming["evaluations"]), use_container_width=True)
    elif upcoming is not None:
        st.info("Nothing scheduled.")


def render_profile_page() -> None:
    st.header("👤 Profile")

    login = st.text_input("Login", value=os.getenv("INTRA_LOGIN", ""), key="profile_login")
    refresh = st.button("Refresh from Intranet")
    if not login.strip():
        return

    result = fetch_profile(login.strip(), refresh)
    if not result:
        return

    states = result.get("states", {})
    profile = result.get("profile")
    if profile:
        col1, col2, col3 = st.columns(3)
        col1.metric("Wallet", f"{profile.get('wallet', 0)} ₳")
        col2.metric("Evaluation Points", profile.get("correction_point", 0))
        col3.metric("Campus", profile.get("campus_name") or "-")
    else:
        st.info("No profile loaded yet. Use refresh.")

    st.write("### Coalitions")
    if states.get("coalitions") == "failed":
        st.warning("Coalitions could not be refreshed; showing last known values.")
    if result.get("coalitions"):
        st.dataframe(pd.DataFrame(result["coalitions"]), use_container_width=True)

    st.write("### Projects")
    if states.get("projects") == "failed":
        st.warning("Projects could not be refreshed; showing last known values.")
    active_col, finished_col = st.columns(2)
    with active_col:
        st.caption("In progress")
        if result.get("active_projects"):
            st.dataframe(pd.DataFrame(result["active_projects"])[["name", "status"]], use_container_width=True)
    with finished_col:
        st.caption("Finished")
        if result.get("finished_projects"):
            st.dataframe(
                pd.DataFrame(result["finished_projects"])[["name", "final_mark", "validated"]],
                use_container_width=True,
            )

    if result.get("last_updated"):
        st.caption(f"Last updated: {result['last_updated']}")


def render_campus_page() -> None:
    st.header("🏫 Campus")

    default_campus = int(os.getenv("INTRA_CAMPUS_ID", "1") or 1)
    campus_id = st.number_input("Campus ID", min_value=1, value=default_campus, step=1)
    refresh = st.button("Refresh Campus")

    result = fetch_campus(int(campus_id), refresh)
    if result and result.get("info"):
        info = result["info"]
        col1, col2, col3 = st.columns(3)
        col1.metric("Campus", info.get("name", "-"))
        col2.metric("Active Now", result.get("active_users_count", 0))
        col3.metric("Students", info.get("users_count") or "-")
        if info.get("address"):
            st.caption(info["address"])

        st.write("### Upcoming Events")
        events = result.get("upcoming_events", [])
        if events:
            rows = [
                {
                    "title": event["title"],
                    "when": event["when"],
                    "location": event.get("location") or "",
                    "badges": ", ".join(event.get("badges", [])),
                }
                for event in events
            ]
            st.dataframe(pd.DataFrame(rows), use_container_width=True)
        else:
            st.info("No upcoming events.")
        if result.get("last_updated"):
            st.caption(f"Last updated: {result['last_updated']}")
    elif result and result.get("state") == "failed":
        st.warning("Campus dashboard could not be loaded.")

    st.write("### Find a Student")
    query = st.text_input("Login starts with", key="search_query")
    if len(query.strip()) >= 2:
        found = search_users(query.strip(), int(campus_id))
        if found and found.get("users"):
            st.dataframe(pd.DataFrame(found["users"])[["login", "display_name", "pool_year"]], use_container_width=True)
        elif found is not None:
            st.info("No matching login.")


# ==========================================
# Main App Router
# ==========================================
def main() -> None:
    st.sidebar.title("Intra Companion")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigation Module",
        ["Log Time", "Evaluation Slots", "Profile", "Campus"],
    )

    st.sidebar.markdown("---")
    st.sidebar.caption(f"Backend: {API_BASE_URL}")

    if page == "Log Time":
        render_logtime_page()
    elif page == "Evaluation Slots":
        render_slots_page()
    elif page == "Profile":
        render_profile_page()
    elif page == "Campus":
        render_campus_page()


if __name__ == "__main__":
    main()
