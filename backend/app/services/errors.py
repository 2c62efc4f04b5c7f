"""Domain errors raised by the service layer and translated to HTTP codes by the routers."""


class SolarOpsError(Exception):
    """Base class for expected, user-facing service errors."""
    status_code = 400


class ProjectNotFoundError(SolarOpsError, LookupError):
    status_code = 404

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class ProjectAlreadyDeletedError(SolarOpsError):
    status_code = 409

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} is already deleted")
        self.project_id = project_id


class InvalidResolutionError(SolarOpsError, ValueError):
    status_code = 400


class ReviewNotFoundError(SolarOpsError, LookupError):
    status_code = 404

    def __init__(self, review_id: str):
        super().__init__(f"Duplicate review {review_id} not found")
        self.review_id = review_id
