"""
Tool implementations for the jcg-gamza content tools.

Each tool fetches from the Content API and renders Markdown. Tools never
raise: a failed fetch becomes an "오류: ..." string so the MCP client shows a
readable message.
"""

import logging
from typing import List, Optional

from content_client import ContentClient, encode_component
from models import ContentDocument, FileListing, SearchResponse, Subject

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_SUBJECTS = ["db", "network-os", "sw-design", "sw-dev", "security-newtech"]
NO_TITLE = "(제목 없음)"
NO_PATTERNS_FOUND = "키워드 표 패턴을 찾을 수 없습니다."
QUERY_TOO_SHORT = "오류: 검색어는 2글자 이상이어야 합니다"


def find_table_block(content: str) -> Optional[str]:
    """Return the first keyword-table-like region of an MDX body, or None.

    Grammar, scanned line by line:
      start  := the first line holding two pipes with at least one character
                between them; the block starts at that line's first pipe
      end    := the first blank line ("\\n\\n") after that line's last pipe
    The region between is taken verbatim and stripped. This is a sniffing
    heuristic, not a table parser: prose between the table and the blank
    line is captured too, and a table with no blank line after it is missed.
    """
    offset = 0
    for line in content.split("\n"):
        first = line.find("|")
        last = line.rfind("|")
        if first != -1 and last - first >= 2:
            start = offset + first
            end = content.find("\n\n", offset + last + 1)
            if end == -1:
                return None
            return content[start:end + 2].strip()
        offset += len(line) + 1
    return None


def _format_file_list(files) -> str:
    lines = []
    for f in files:
        tags = f" [{', '.join(f.tags)}]" if f.tags else ""
        lines.append(f"- **{f.filename}**: {f.title or NO_TITLE}{tags}")
    return "\n".join(lines)


def _format_document(doc: ContentDocument, filename: str) -> str:
    header = "".join([
        f"# {doc.title or filename}",
        f"\n> {doc.description}" if doc.description else "",
        f"\n\n**태그**: {', '.join(doc.tags)}" if doc.tags else "",
        "\n\n---\n\n",
    ])
    return header + doc.content


class ContentTools:
    """The seven read-only content tools exposed over MCP"""

    def __init__(self, client: ContentClient):
        self.client = client

    async def list_subjects(self) -> str:
        result = await self.client.fetch("/api/content/subjects", List[Subject])
        if not result.success or result.data is None:
            return f"오류: {result.error or '과목 목록을 가져올 수 없습니다'}"

        formatted = "\n".join(f"- {s.name} ({s.slug}): {s.file_count}개 파일" for s in result.data)
        return f"## jcg-gamza 과목 목록\n\n{formatted}"

    async def list_theory_files(self, subject: str) -> str:
        result = await self.client.fetch(
            f"/api/content/theory?subject={encode_component(subject)}", FileListing
        )
        if not result.success or result.data is None:
            return f"오류: {result.error or '파일 목록을 가져올 수 없습니다'}"

        files = result.data.files
        return f"## {subject} 이론 파일 목록 ({len(files)}개)\n\n{_format_file_list(files)}"

    async def read_theory(self, subject: str, filename: str) -> str:
        result = await self.client.fetch(
            f"/api/content/theory?subject={encode_component(subject)}&file={encode_component(filename)}",
            ContentDocument,
        )
        if not result.success or result.data is None:
            return f"오류: {result.error or '파일을 가져올 수 없습니다'}"

        return _format_document(result.data, filename)

    async def search_content(self, query: str, subject: Optional[str] = None, limit: int = 10) -> str:
        if len(query) < 2:
            return QUERY_TOO_SHORT

        endpoint = f"/api/content/search?q={encode_component(query)}&limit={limit}"
        if subject:
            endpoint += f"&subject={encode_component(subject)}"

        result = await self.client.fetch(endpoint, SearchResponse)
        if not result.success or result.data is None:
            return f"오류: {result.error or '검색에 실패했습니다'}"

        page = result.data
        if not page.results:
            return f'"{query}"에 대한 검색 결과가 없습니다.'

        blocks = []
        for i, r in enumerate(page.results, start=1):
            preview = r.matched_content.replace("\n", "\n  ")
            blocks.append("\n".join([
                f"### {i}. {r.title or r.filename}",
                f"- **위치**: {r.subject}/{r.filename}",
                f"- **매칭 횟수**: {r.match_count}회",
                f"- **내용 미리보기**:\n  {preview}",
            ]))

        return (
            f'## "{query}" 검색 결과 (총 {page.total_results}개 중 {len(page.results)}개 표시)\n\n'
            + "\n\n".join(blocks)
        )

    async def extract_patterns(self, subject: Optional[str] = None, limit: int = 3) -> str:
        subjects_to_check = [subject] if subject else DEFAULT_PATTERN_SUBJECTS
        patterns: List[str] = []

        for subj in subjects_to_check:
            if len(patterns) >= limit:
                break

            listing = await self.client.fetch(
                f"/api/content/theory?subject={encode_component(subj)}", FileListing
            )
            if not listing.success or listing.data is None:
                logger.info(f"Skipping subject {subj} while extracting patterns: {listing.error}")
                continue

            for file in listing.data.files[:limit - len(patterns)]:
                doc = await self.client.fetch(
                    f"/api/content/theory?subject={encode_component(subj)}&file={encode_component(file.filename)}",
                    ContentDocument,
                )
                if not doc.success or doc.data is None:
                    continue

                block = find_table_block(doc.data.content)
                if block:
                    patterns.append(f"### {subj}/{file.filename}\n```markdown\n{block}\n```")

        if not patterns:
            return NO_PATTERNS_FOUND

        return f"## 키워드 표 패턴 샘플 ({len(patterns)}개)\n\n" + "\n\n".join(patterns)

    async def list_exam_registration_files(self) -> str:
        result = await self.client.fetch("/api/content/exam-registration", FileListing)
        if not result.success or result.data is None:
            return f"오류: {result.error or '시험 응시 파일 목록을 가져올 수 없습니다'}"

        files = result.data.files
        return f"## 시험 응시 파일 목록 ({len(files)}개)\n\n{_format_file_list(files)}"

    async def read_exam_registration(self, filename: str) -> str:
        result = await self.client.fetch(
            f"/api/content/exam-registration?file={encode_component(filename)}", ContentDocument
        )
        if not result.success or result.data is None:
            return f"오류: {result.error or '파일을 가져올 수 없습니다'}"

        return _format_document(result.data, filename)
