import asyncio
import datetime
import logging
from typing import Optional

import requests
import streamlit as st

from config.settings import settings
from backend.errors import ModeSwitchLocked, ValidationError
from backend.model import (
    ChoiceValue,
    CompositeValue,
    ImageValue,
    NumericValue,
    SlotId,
    StudioContext,
    TextValue,
)
from backend.state import GenerationState
from backend.studio import StudioSession

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

SLOT_LABELS = {
    SlotId.PAINT: "🎨 Color",
    SlotId.BODYKIT: "🧩 Bodykit",
    SlotId.RIMS: "🛞 Rims",
    SlotId.HEIGHT: "↕️ Height",
    SlotId.LIVERY: "🏁 Livery",
    SlotId.WINDOW: "🪟 Tint",
    SlotId.BACKGROUND: "🌄 Background",
    SlotId.ADD_PERSON: "🧍 Add Person",
    SlotId.MULTICAR: "🚗 Add Car",
    SlotId.VIDEO_PROMPT: "💬 Prompt",
    SlotId.VIDEO_DURATION: "⏱️ Duration",
    SlotId.VIDEO_SCALE: "📐 Scale",
    SlotId.VIDEO_QUALITY: "✨ Quality",
}


def download_image(image_url: str) -> Optional[bytes]:
    """Download the result so it can be offered as a file."""
    try:
        resp = requests.get(image_url, timeout=30)
        resp.raise_for_status()
        return resp.content
    except requests.RequestException as e:
        st.error(f"Could not download the result: {e}")
        return None


def get_session(user_id: str, project_id: str) -> StudioSession:
    session: Optional[StudioSession] = st.session_state.get("studio")
    if session is None or session.context.user_id != user_id or session.context.project_id != project_id:
        session = StudioSession(StudioContext(user_id=user_id or None, project_id=project_id or None))
        st.session_state["studio"] = session
    return session


def apply(session: StudioSession, slot_id: SlotId, value) -> None:
    try:
        session.select(slot_id, value)
    except ValidationError as e:
        st.warning(str(e))


# ==========================
# Page
# ==========================
st.set_page_config(page_title="Render Studio", page_icon="🚘", layout="wide")
st.title("🚘 Render Studio")

with st.sidebar:
    st.header("⚙️ Project")
    user_id = st.text_input("👤 User ID", value=st.session_state.get("user_id", ""))
    project_id = st.text_input("📁 Project ID", value=st.session_state.get("project_id", ""))
    st.session_state["user_id"] = user_id
    st.session_state["project_id"] = project_id

    session = get_session(user_id, project_id)

    st.markdown("---")
    mode_label = st.radio("🎯 Mode", ["📷 Photo", "🎬 Video"], index=0 if session.mode == "photo" else 1)
    target_mode = "photo" if mode_label.startswith("📷") else "video"
    try:
        session.switch_mode(target_mode)
    except ModeSwitchLocked as e:
        st.warning(str(e))

    if session.mode == "photo":
        session.prefs.resolution = st.selectbox("Resolution", ["1K", "2K", "4K"], index=0)
        session.prefs.aspect_ratio = st.selectbox(
            "Aspect ratio", ["auto", "instagram_post", "instagram_story", "marketplace_website"], index=0
        )

    st.markdown("---")
    st.markdown(f"**💳 Credits per render:** {session.credit_cost}")
    st.write("🔗 Render endpoint:", settings.STUDIO_ENDPOINT_URL)

# ==========================
# Source
# ==========================
source_url = st.text_input("🖼️ Source image URL or key")
if st.button("Import source", disabled=not source_url):
    asyncio.run(session.load_source(source_url))
    st.rerun()

# ==========================
# Features
# ==========================
st.subheader("Features")
fs = session.current_features
cols = st.columns(3)
for i, slot_id in enumerate([sid for sid in SLOT_LABELS if sid in fs]):
    slot = fs[slot_id]
    with cols[i % 3]:
        done = "✅ " if fs.is_populated(slot_id) else ""
        with st.expander(f"{done}{SLOT_LABELS[slot_id]}"):
            key = f"{session.mode}_{slot_id.value}"
            if slot.kind.value == "composite":
                image_url = st.text_input("Reference image URL", key=f"{key}_img")
                text = st.text_input("Instruction", key=f"{key}_txt")
                if st.button("Apply", key=f"{key}_apply"):
                    apply(session, slot_id, CompositeValue(image_url=image_url or None, text=text or None))
            elif slot.kind.value == "image":
                urls = st.text_area("Reference image URL(s), one per line", key=f"{key}_img")
                if st.button("Apply", key=f"{key}_apply"):
                    apply(session, slot_id, ImageValue(urls=[u for u in urls.splitlines() if u.strip()]))
            elif slot.kind.value == "text":
                text = st.text_area("Prompt", key=f"{key}_txt")
                if st.button("Apply", key=f"{key}_apply"):
                    apply(session, slot_id, TextValue(text=text))
            elif slot.kind.value == "numeric":
                if slot_id == SlotId.VIDEO_DURATION:
                    number = st.selectbox("Seconds", [5, 10], key=f"{key}_num")
                else:
                    number = st.slider("Tint %", 0, 100, 50, key=f"{key}_num")
                if st.button("Apply", key=f"{key}_apply"):
                    apply(session, slot_id, NumericValue(number=number))
            else:
                options = {
                    SlotId.HEIGHT: ["extra-low", "low", "high", "extra-high"],
                    SlotId.VIDEO_SCALE: ["16:9", "9:16", "1:1"],
                    SlotId.VIDEO_QUALITY: ["draft", "standard", "high"],
                }[slot_id]
                choice = st.radio("Option", options, key=f"{key}_choice")
                if st.button("Apply", key=f"{key}_apply"):
                    apply(session, slot_id, ChoiceValue(choice=choice))
            if fs.is_populated(slot_id) and st.button("🗑️ Remove", key=f"{key}_clear"):
                session.clear(slot_id)
                st.rerun()

# ==========================
# Generate
# ==========================
state = session.machine.state
if state == GenerationState.IDLE:
    if st.button("✨ Generate", disabled=not session.can_generate(), type="primary"):
        try:
            with st.spinner("🎨 Rendering..."):
                asyncio.run(session.submit())
        except ValidationError as e:
            st.error(str(e))
        st.rerun()
elif session.machine.is_settled_with_problem:
    icon = "⏱️" if state == GenerationState.TIMEOUT else "❌"
    st.error(f"{icon} {session.machine.message}")
    retry_col, close_col = st.columns(2)
    if retry_col.button("🔁 Retry"):
        with st.spinner("🎨 Rendering..."):
            asyncio.run(session.retry())
        st.rerun()
    if close_col.button("Close"):
        session.dismiss()
        st.rerun()

for warning in session.last_warnings:
    st.caption(f"⚠️ {warning}")

# ==========================
# Result
# ==========================
gallery = session.gallery
if session.mode == "video" and gallery.state.video_result_url:
    st.video(gallery.state.video_result_url)
elif gallery.before:
    if gallery.after:
        view = st.radio("View", ["before", "after"], horizontal=True, index=0 if gallery.current_view == "before" else 1)
        if view != gallery.current_view:
            session.view(view)
            st.rerun()
    shown = gallery.after if gallery.current_view == "after" and gallery.after else gallery.before
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.image(shown, caption=gallery.current_view.title(), use_container_width=True)

    if gallery.after and gallery.current_view == "after":
        data = download_image(gallery.after)
        if data:
            ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            st.download_button("⬇️ Download", data=data, file_name=f"render_{ts}.png", mime="image/png")

    if session.can_upscale():
        if st.button("🔍 Upscale", help="Show the rendered result"):
            session.upscale()
            st.rerun()
