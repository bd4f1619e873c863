from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from merittrac.core.errors import AccessDeniedError
from merittrac.core.models import Role
from merittrac.state.session_state import SessionState


class Action(str, Enum):
    VIEW_DASHBOARD = "view_dashboard"
    MANAGE_STUDENTS = "manage_students"
    MANAGE_TEACHERS = "manage_teachers"
    MANAGE_SUBJECTS = "manage_subjects"
    MANAGE_SEMESTERS = "manage_semesters"
    MANAGE_ASSIGNMENTS = "manage_assignments"
    DELETE_MARKS = "delete_marks"
    ENTER_MARKS = "enter_marks"
    VIEW_CLASS_MARKS = "view_class_marks"
    VIEW_OWN_MARKS = "view_own_marks"
    ANALYZE_PERFORMANCE = "analyze_performance"


ROLE_ACTIONS: Dict[Role, FrozenSet[Action]] = {
    Role.ADMIN: frozenset(
        {
            Action.VIEW_DASHBOARD,
            Action.MANAGE_STUDENTS,
            Action.MANAGE_TEACHERS,
            Action.MANAGE_SUBJECTS,
            Action.MANAGE_SEMESTERS,
            Action.MANAGE_ASSIGNMENTS,
            Action.DELETE_MARKS,
        }
    ),
    Role.TEACHER: frozenset(
        {
            Action.VIEW_DASHBOARD,
            Action.ENTER_MARKS,
            Action.VIEW_CLASS_MARKS,
        }
    ),
    Role.STUDENT: frozenset(
        {
            Action.VIEW_DASHBOARD,
            Action.VIEW_OWN_MARKS,
            Action.ANALYZE_PERFORMANCE,
        }
    ),
}


@dataclass(frozen=True)
class NavItem:
    href: str
    label: str
    action: Action


NAV_ITEMS: Tuple[NavItem, ...] = (
    NavItem("/dashboard", "Dashboard", Action.VIEW_DASHBOARD),
    NavItem("/dashboard/admin/students", "Manage Students", Action.MANAGE_STUDENTS),
    NavItem("/dashboard/admin/teachers", "Manage Teachers", Action.MANAGE_TEACHERS),
    NavItem("/dashboard/admin/subjects", "Manage Subjects", Action.MANAGE_SUBJECTS),
    NavItem("/dashboard/admin/semesters", "Manage Semesters", Action.MANAGE_SEMESTERS),
    NavItem("/dashboard/admin/assign-subjects", "Assign Subjects", Action.MANAGE_ASSIGNMENTS),
    NavItem("/dashboard/teacher/manage-marks", "Manage Marks", Action.ENTER_MARKS),
    NavItem("/dashboard/teacher/view-students", "View Students", Action.VIEW_CLASS_MARKS),
    NavItem("/dashboard/student/my-marks", "My Marks", Action.VIEW_OWN_MARKS),
    NavItem("/dashboard/student/performance-analysis", "Performance Analysis", Action.ANALYZE_PERFORMANCE),
)


def is_allowed(role: Role, action: Action) -> bool:
    return action in ROLE_ACTIONS.get(role, frozenset())


def authorize(session: SessionState, action: Action) -> None:
    if not session.is_authenticated or session.role is None:
        raise AccessDeniedError("Sign in required.")
    if not is_allowed(session.role, action):
        raise AccessDeniedError(f"Role '{session.role.value}' may not {action.value.replace('_', ' ')}.")


def nav_items_for(role: Role) -> List[NavItem]:
    return [item for item in NAV_ITEMS if is_allowed(role, item.action)]
