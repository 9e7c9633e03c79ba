from sqladmin import Admin, ModelView
from markupsafe import Markup, escape

from .database import engine
from .models import Participant, Report, TrainingSession


def render_report_infographic(model: Report, _attribute: str) -> Markup | str:
    image_url = (model.report_image_url or "").strip()
    if not image_url:
        return "-"
    return Markup(
        f'<a href="{escape(image_url)}" target="_blank">'
        f'<img src="{escape(image_url)}" alt="infographic" style="max-width:160px;max-height:220px"></a>'
    )


def render_report_title(model: Report, _attribute: str) -> str:
    return (model.report or {}).get("title") or "-"


class TrainingSessionAdmin(ModelView, model=TrainingSession):
    name = "교육 세션"
    name_plural = "교육 세션"
    icon = "fa-solid fa-fire"
    column_list = [
        TrainingSession.id,
        TrainingSession.group_name,
        TrainingSession.total_teams,
        TrainingSession.is_report_enabled,
        TrainingSession.is_timer_running,
        TrainingSession.timer_end_time,
        TrainingSession.created_at,
    ]
    form_excluded_columns = [
        TrainingSession.created_at,
        TrainingSession.participants,
        TrainingSession.reports,
    ]
    column_default_sort = [("created_at", True)]
    column_labels = {
        "id": "ID",
        "group_name": "교육 그룹명",
        "total_teams": "팀 수",
        "is_report_enabled": "보고서 제출 허용",
        "is_timer_running": "타이머 동작",
        "timer_end_time": "타이머 종료(ms)",
        "created_at": "생성일",
    }


class ParticipantAdmin(ModelView, model=Participant):
    name = "학습자"
    name_plural = "학습자"
    icon = "fa-solid fa-user-graduate"
    can_create = False
    column_list = [
        Participant.session_id,
        Participant.team_id,
        Participant.name,
        Participant.current_step,
        Participant.updated_at,
    ]
    form_excluded_columns = [
        Participant.created_at,
        Participant.updated_at,
        Participant.auth_sessions,
    ]
    column_default_sort = [("updated_at", True)]
    column_labels = {
        "session_id": "세션",
        "team_id": "팀",
        "name": "이름",
        "current_step": "현재 단계",
        "collected_facts": "수집한 사실",
        "personal_notes": "개인 메모",
        "gap_analysis": "문제 정의",
        "power_calculation": "전력 계산",
        "root_causes": "원인 분석",
        "solutions": "해결 방안",
        "final_report": "최종 보고서",
        "updated_at": "최근 활동",
    }


class ReportAdmin(ModelView, model=Report):
    name = "보고서"
    name_plural = "제출 보고서"
    icon = "fa-solid fa-file-lines"
    can_create = False
    column_list = [
        Report.session_id,
        Report.team_id,
        Report.user_name,
        Report.report,
        Report.report_image_url,
        Report.submitted_at,
    ]
    column_formatters = {
        Report.report: render_report_title,
        Report.report_image_url: render_report_infographic,
    }
    column_formatters_detail = {
        Report.report_image_url: render_report_infographic,
    }
    form_excluded_columns = [Report.created_at, Report.updated_at]
    column_default_sort = [("submitted_at", True)]
    column_labels = {
        "session_id": "세션",
        "team_id": "팀",
        "user_name": "작성자",
        "report": "보고서",
        "report_image_url": "인포그래픽",
        "submitted_at": "제출 시각(ms)",
    }


def setup_admin(app):
    admin = Admin(app, engine, title="FireSim 관리자")
    admin.add_view(TrainingSessionAdmin)
    admin.add_view(ParticipantAdmin)
    admin.add_view(ReportAdmin)
    return admin
