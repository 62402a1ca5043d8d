"""Document, commit and remote listing models"""

from pydantic import BaseModel, Field

from whatsnew_mcp.models.sources_config import SourceRepository


def document_path(repository_key: str, file_path: str) -> str:
    """Globally unique document identity: owner/repo/path/in/repo.md"""
    return f"{repository_key}/{file_path}"


class TreeEntry(BaseModel):
    """One entry of a recursive git tree listing"""

    path: str
    type: str = Field(description="blob or tree")
    sha: str = Field(description="Content identifier (blob hash)")
    size: int | None = None


class TreeListing(BaseModel):
    """Recursive tree of a branch"""

    entries: list[TreeEntry] = Field(default_factory=list)
    truncated: bool = False


class CommitSummary(BaseModel):
    """A commit as returned by the commit list endpoint"""

    sha: str
    message: str
    author: str | None = None
    date: str = Field(description="Author date, ISO 8601")
    additions: int | None = None
    deletions: int | None = None
    total: int | None = None


class CommitPage(BaseModel):
    """One page of commit history plus the pagination hint"""

    commits: list[CommitSummary] = Field(default_factory=list)
    last_page_url: str | None = Field(
        default=None, description="rel=last URL from the Link header, if paginated"
    )


class CommitDetail(BaseModel):
    """A single commit with its changed file names"""

    sha: str
    message: str
    date: str
    files: list[str] = Field(default_factory=list)


class RevisionStamp(BaseModel):
    """When (and by which revision) a path was touched"""

    sha: str
    date: str
    message: str | None = None


class CandidateDocument(BaseModel):
    """A release-notes file discovered in a tree listing, not yet fetched"""

    source: SourceRepository
    file_path: str
    content_id: str
    size: int | None = None
    product: str
    version: str | None = None
    file_url: str
    raw_url: str

    @property
    def path(self) -> str:
        return document_path(self.source.key, self.file_path)


class DocumentRecord(BaseModel):
    """The unit of searchable content"""

    id: int | None = Field(default=None, description="Store-assigned row id")
    path: str = Field(min_length=1, description="Globally unique identity (owner/repo/file)")
    repository: str = Field(description="owner/repo the document lives in")
    file_path: str = Field(description="Path inside the repository")
    title: str = Field(min_length=1)
    description: str | None = None
    product: str
    version: str | None = None
    release_date: str | None = Field(
        default=None, description="Declared date from front matter, in its source format"
    )
    preview_date: str | None = None
    ga_date: str | None = None
    content_id: str | None = Field(default=None, description="Blob hash of the fetched content")
    last_change_date: str | None = Field(
        default=None, description="Date of the latest revision touching the path"
    )
    last_change_revision: str | None = None
    first_observed_date: str | None = Field(
        default=None, description="Date of the earliest known revision touching the path"
    )
    file_url: str
    raw_content_url: str


class CommitRecord(BaseModel):
    """Audit record of a remote change event"""

    sha: str = Field(min_length=1)
    message: str
    author: str | None = None
    date: str
    files_changed: int | None = None
    additions: int | None = None
    deletions: int | None = None
