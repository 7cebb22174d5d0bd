"""
Custom exception classes for the gallery harness.

Every exception raised here is a harness/infrastructure failure: missing or
unreadable files, malformed inputs, broken template-store bookkeeping, engine
initialization failures and candidate list protocol violations. These are
always fatal for the stage that raises them. Per-record engine return codes
are not exceptions; they are recorded in the output files.
"""

from typing import Optional, Dict, Any, List


class HarnessError(Exception):
    """
    Root of every error the harness raises itself.

    Parameters
    ----------
    message : str
        What went wrong, in words suitable for stderr.
    context : dict, optional
        Paths, ids and values that locate the failure.
    error_code : str, optional
        Stable code such as ``STORE_001`` for log filtering.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.context = dict(context) if context else {}
        self.error_code = error_code
        super().__init__(message)

    def __str__(self) -> str:
        text = self.message
        if self.error_code:
            text += f" [Error Code: {self.error_code}]"
        if self.context:
            details = ", ".join(f"{key}={value}" for key, value in self.context.items())
            text += f" [Context: {details}]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Return the error as a flat dict of structured log fields."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ConfigurationError(HarnessError):
    """
    Exception raised for configuration-related errors.

    This includes invalid command-line values, unknown modalities or actions,
    and unsupported modality/action combinations.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value

        super().__init__(message, context, kwargs.get("error_code", "CONFIG_001"))


class InputError(HarnessError):
    """
    Exception raised for errors related to reading harness inputs.

    This includes unreadable record files, malformed record lines and
    undecodable media.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if file_path:
            context["file_path"] = file_path

        super().__init__(message, context, kwargs.get("error_code"))


class InputFileError(InputError):
    """Exception raised when an input or shard file cannot be read or written."""

    def __init__(self, file_path: str, reason: str) -> None:
        message = f"Failed to open stream for {file_path}: {reason}"
        super().__init__(message, file_path=file_path, error_code="INPUT_001")


class RecordFormatError(InputError):
    """Exception raised when an input line does not follow the record grammar."""

    def __init__(self, line: str, reason: str) -> None:
        message = f"Malformed record: {reason}"
        context = {"line": line}
        super().__init__(message, context=context, error_code="INPUT_002")


class ImageDecodeError(InputError):
    """Exception raised when a referenced image cannot be decoded."""

    def __init__(self, image_path: str, reason: str) -> None:
        message = f"Failed to load image file {image_path}: {reason}"
        super().__init__(message, file_path=image_path, error_code="INPUT_003")


class TemplateStoreError(HarnessError):
    """
    Exception raised for EDB / manifest bookkeeping violations.

    This includes unparseable manifest lines, byte ranges outside the blob
    file and overlapping ranges.
    """

    def __init__(
        self,
        message: str,
        edb_path: Optional[str] = None,
        manifest_path: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if edb_path:
            context["edb_path"] = edb_path
        if manifest_path:
            context["manifest_path"] = manifest_path

        super().__init__(message, context, kwargs.get("error_code", "STORE_001"))


class FinalizationError(HarnessError):
    """Exception raised when the gallery cannot be finalized."""

    def __init__(self, message: str, enroll_dir: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if enroll_dir:
            context["enroll_dir"] = enroll_dir

        super().__init__(message, context, kwargs.get("error_code", "FINALIZE_001"))


class EngineError(HarnessError):
    """
    Exception raised for failures at the template engine boundary.

    Per-record engine return codes are not errors; this covers engines that
    cannot be loaded or refuse a one-time initialization step.
    """

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if operation:
            context["engine_operation"] = operation

        super().__init__(message, context, kwargs.get("error_code"))


class EngineLoadError(EngineError):
    """Exception raised when an engine reference cannot be resolved."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(
            f"Failed to load template engine '{reference}': {reason}",
            operation="load",
            context={"engine_reference": reference},
            error_code="ENGINE_001",
        )


class EngineInitializationError(EngineError):
    """Exception raised when an engine initialization call does not succeed."""

    def __init__(self, operation: str, return_code: int, info: str = "") -> None:
        super().__init__(
            f"{operation}() returned error code: {return_code}",
            operation=operation,
            context={"return_code": return_code, "info": info},
            error_code="ENGINE_002",
        )


class CandidateListError(HarnessError):
    """
    Exception raised when an engine returns a candidate list that violates
    the identification protocol.

    The offending list is kept on the exception for diagnostics.
    """

    def __init__(
        self,
        message: str,
        probe_id: str,
        candidates: Optional[List[Any]] = None,
        **kwargs,
    ) -> None:
        self.probe_id = probe_id
        self.candidates = list(candidates or [])
        context = kwargs.get("context", {})
        context["probe_id"] = probe_id

        super().__init__(message, context, kwargs.get("error_code"))


class CandidateListLengthError(CandidateListError):
    """Exception raised when the candidate list length differs from the request."""

    def __init__(
        self, probe_id: str, candidates: List[Any], expected_length: int
    ) -> None:
        super().__init__(
            f"The number of returned candidates: {len(candidates)} is not the same "
            f"as the number of requested candidates: {expected_length}",
            probe_id,
            candidates,
            context={"returned": len(candidates), "requested": expected_length},
            error_code="CANDIDATE_001",
        )


class CandidateOrderError(CandidateListError):
    """Exception raised when assigned scores are not in descending order."""

    def __init__(self, probe_id: str, candidates: List[Any], rank: int) -> None:
        super().__init__(
            "Similarity scores are not sorted in descending order",
            probe_id,
            candidates,
            context={"rank": rank},
            error_code="CANDIDATE_002",
        )


class DuplicateCandidateError(CandidateListError):
    """Exception raised when a gallery template is returned twice for one probe."""

    def __init__(self, probe_id: str, candidates: List[Any], template_id: str) -> None:
        super().__init__(
            "Duplicate template IDs exist in the candidate list",
            probe_id,
            candidates,
            context={"template_id": template_id},
            error_code="CANDIDATE_003",
        )
