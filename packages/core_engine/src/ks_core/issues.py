from dataclasses import dataclass
from typing import Dict, Iterable, List

# Skip reasons reported per constraint
SKIP_DISABLED = "SKIP_DISABLED"
SKIP_UNSUPPORTED = "SKIP_UNSUPPORTED"
SKIP_MATERIALIZATION = "SKIP_MATERIALIZATION"
SKIP_TEST_FAILED = "SKIP_TEST_FAILED"
SKIP_TEST_NOT_RUN = "SKIP_TEST_NOT_RUN"
SKIP_FILTERED_TEST = "SKIP_FILTERED_TEST"
MISSING_PARENT_KEY = "MISSING_PARENT_KEY"
CONSTRAINT_EXISTS = "CONSTRAINT_EXISTS"
TABLE_ABORTED = "TABLE_ABORTED"

# Problems with the declarations or the database
MALFORMED_TEST = "MALFORMED_TEST"
EXECUTION_FAILED = "EXECUTION_FAILED"
DUPLICATE_PRIMARY_KEY = "DUPLICATE_PRIMARY_KEY"
DEPENDENCY_CYCLE = "DEPENDENCY_CYCLE"


@dataclass(frozen=True)
class Issue:
    severity: str
    code: str
    message: str
    path: str = "/"

    def to_dict(self) -> Dict[str, str]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "path": self.path,
        }


def info(code: str, message: str, path: str = "/") -> Issue:
    return Issue(severity="info", code=code, message=message, path=path)


def warn(code: str, message: str, path: str = "/") -> Issue:
    return Issue(severity="warn", code=code, message=message, path=path)


def error(code: str, message: str, path: str = "/") -> Issue:
    return Issue(severity="error", code=code, message=message, path=path)


def has_errors(issues: Iterable[Issue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def to_lines(issues: List[Issue]) -> List[str]:
    lines = []
    for issue in issues:
        lines.append(
            f"[{issue.severity.upper()}] {issue.code} {issue.path}: {issue.message}"
        )
    return lines
