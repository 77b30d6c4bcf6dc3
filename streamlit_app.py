from __future__ import annotations

from collections import Counter
from pathlib import Path

import streamlit as st

from path_claim.models import DEFAULT_TZ, GeoPoint, Session, Territory, TerritoryStatus
from path_claim.proximity import ProximityMonitor, ProximityParams
from path_claim.storage import JsonRecordStore, session_from_record, territory_from_record
from path_claim.timeutils import format_duration_ms, format_epoch_ms


def _mtime(path: str) -> float:
    p = Path(path)
    journal = p.with_name(f"{p.stem}.journal.jsonl")
    return max((f.stat().st_mtime for f in (p, journal) if f.exists()), default=0.0)


@st.cache_data(show_spinner=False)
def _load_territories(path: str, mtime: float) -> list[Territory]:
    _ = mtime  # part of cache key so updated files reload automatically
    return [territory_from_record(r) for r in JsonRecordStore(path).load_all()]


@st.cache_data(show_spinner=False)
def _load_sessions(path: str, mtime: float) -> list[Session]:
    _ = mtime
    sessions = [session_from_record(r) for r in JsonRecordStore(path).load_all()]
    sessions.sort(key=lambda s: s.start_time_ms, reverse=True)
    return sessions


def _territory_rows(territories: list[Territory], tz_name: str) -> list[dict[str, object]]:
    rows = []
    for t in territories:
        m = t.metadata
        rows.append(
            {
                "name": m.name,
                "status": t.status.value,
                "rarity": m.rarity.value,
                "difficulty": m.difficulty,
                "reward": m.estimated_reward,
                "distance_m": round(t.session_summary.distance_m, 1),
                "landmarks": ", ".join(m.landmarks),
                "owner": t.owner or "",
                "claimed_at": format_epoch_ms(t.claimed_at_ms, tz_name),
                "key": t.uniqueness_key,
                "id": t.id,
            }
        )
    rows.sort(key=lambda r: int(r["difficulty"]), reverse=True)
    return rows


def main() -> None:
    st.set_page_config(page_title="跑步圈地：领地与记录", layout="wide")
    st.title("跑步圈地：领地与记录")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        territories_path = st.text_input("领地存储文件", value="territories.json")
        sessions_path = st.text_input("记录存储文件", value="sessions.json")

        st.subheader("附近领地")
        live_lat = st.number_input("当前纬度", value=47.6062, format="%.7f")
        live_lon = st.number_input("当前经度", value=-122.3321, format="%.7f")
        threshold_m = st.number_input("距离阈值（米）", value=100.0, step=10.0)

    try:
        territories = _load_territories(territories_path, _mtime(territories_path))
        sessions = _load_sessions(sessions_path, _mtime(sessions_path))
    except Exception as exc:
        st.exception(exc)
        return

    st.subheader("汇总")
    by_status = Counter(t.status for t in territories)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("领地总数", str(len(territories)))
    c2.metric("已占领", str(by_status[TerritoryStatus.CLAIMED]))
    c3.metric("待确认", str(by_status[TerritoryStatus.PENDING_CLAIM]))
    c4.metric("记录数", str(len(sessions)))

    if territories:
        st.subheader("领地分布")
        st.map(
            {
                "lat": [t.bounds.center.lat for t in territories],
                "lon": [t.bounds.center.lng for t in territories],
            }
        )
        st.subheader("领地明细（按难度排序）")
        st.dataframe(_territory_rows(territories, tz_name), use_container_width=True, height=360)
    else:
        st.info(f"找不到领地：{territories_path!r}。可以先运行 python -m path_claim replay --synthesize 生成。")

    st.subheader(f"附近已占领领地（{threshold_m:.0f}m 内）")
    monitor = ProximityMonitor(params=ProximityParams(threshold_m=float(threshold_m)))
    nearby = monitor.update_nearby(GeoPoint(lat=float(live_lat), lng=float(live_lon)), territories)
    if nearby:
        st.dataframe(
            [
                {"name": n.territory.metadata.name, "distance_m": round(n.distance_m, 1), "direction": n.direction}
                for n in nearby
            ],
            use_container_width=True,
        )
    else:
        st.caption("附近没有已占领的领地。")

    if not sessions:
        return

    st.subheader("记录")
    labels = {
        f"{format_epoch_ms(s.start_time_ms, tz_name)}  {s.total_distance_m:.0f}m  {s.id}": s for s in sessions
    }
    choice = st.selectbox("选择记录", list(labels))
    session = labels[choice]
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("距离", f"{session.total_distance_m:.0f} m")
    c2.metric("时长", format_duration_ms(session.total_duration_ms))
    c3.metric("平均速度", f"{session.avg_speed_mps:.2f} m/s")
    c4.metric("可占领", "是" if session.territory_eligible else "否")

    st.map({"lat": [p.lat for p in session.samples], "lon": [p.lng for p in session.samples]})
    if session.laps:
        with st.expander("分圈", expanded=False):
            st.dataframe(
                [
                    {
                        "lap": lap.lap_number,
                        "distance_m": round(lap.distance_m, 1),
                        "duration": format_duration_ms(lap.duration_ms),
                        "total_time": format_duration_ms(lap.total_time_ms),
                    }
                    for lap in session.laps
                ],
                use_container_width=True,
            )
    with st.expander("路段明细", expanded=False):
        st.dataframe(
            [
                {
                    "segment": seg.id,
                    "distance_m": round(seg.distance_m, 2),
                    "duration_s": seg.duration_ms / 1000.0,
                    "speed_mps": round(seg.avg_speed_mps, 2),
                }
                for seg in session.segments
            ],
            use_container_width=True,
            height=360,
        )

    st.caption("说明：该界面只读取存储文件（快照 + journal），不会修改任何领地状态。")


if __name__ == "__main__":
    main()
