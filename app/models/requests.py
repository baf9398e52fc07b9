# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# Multipart uploads are read straight from the form (see app/api/analysis.py);
# this module covers the JSON body for already-extracted text.
#
# Field names are camelCase on the wire (fileName, reviewMode), matching the
# job and report models. snake_case is accepted too.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SubmitTextRequest(BaseModel):
    """
    Request body for POST /analysis with Content-Type: application/json.

    Example:
        {
            "fileName": "draft.tex",
            "content": "\\section{Introduction} ...",
            "reviewMode": "full"
        }
    """

    file_name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Original file name; its extension selects the file type",
        examples=["draft.tex"],
    )
    content: str = Field(
        ...,
        description="Full document text (already extracted from PDF/DOCX upstream)",
    )
    review_mode: str = Field(
        default="full",
        max_length=32,
        description="Review mode recorded on the job and the report",
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "fileName": "draft.md",
                    "content": "# A Note on Vacuum Energy\n\nWe argue that ...",
                    "reviewMode": "full",
                },
            ]
        },
    )
