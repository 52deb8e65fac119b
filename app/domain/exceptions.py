"""
Domain exceptions for the NAV engine
"""


class NAVEngineError(Exception):
    """Base class for NAV engine failures"""


class InvalidSnapshotError(NAVEngineError, ValueError):
    """Calculator input is structurally malformed"""


class FundNotFoundError(NAVEngineError):
    def __init__(self, fund_id: str):
        super().__init__(f"Fund not found: {fund_id}")
        self.fund_id = fund_id


class ShareClassNotFoundError(NAVEngineError):
    def __init__(self, fund_id: str, share_class_id: str):
        super().__init__(f"Share class not found: {fund_id}/{share_class_id}")
        self.fund_id = fund_id
        self.share_class_id = share_class_id


class NAVRecordNotFoundError(NAVEngineError):
    pass


class NAVRecordConflictError(NAVEngineError):
    """A conditional NAV record write lost against a concurrent writer"""


class ApprovalNotFoundError(NAVEngineError):
    def __init__(self, approval_id: str):
        super().__init__(f"Approval not found: {approval_id}")
        self.approval_id = approval_id


class ApprovalTransitionError(NAVEngineError):
    """Approval is not in the state the requested action expects"""


class ApprovalBlockedError(NAVEngineError):
    """A covered NAV carries ERRORS and cannot be approved"""


class NAVRunNotFoundError(NAVEngineError):
    pass


class InvalidRunStateError(NAVEngineError):
    pass
