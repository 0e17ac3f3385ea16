"""Slug normalization"""

import re

_SEPARATORS = re.compile(r"[\s/\\]+")
_UNSAFE = re.compile(r"[^A-Za-z0-9\-._~!$&'()*+,;=:@%]")
# "-" と sub-delims の連続は 1 つの "-" にまとめる
_REPEATED = re.compile(r"[-!$&'()*+,;=:@]{2,}")


def simplify(text: str) -> str:
    """文字列を URL で安全なスラッグに正規化する

    空白とパス区切りを ``-`` にし、URL で使えない文字を除去し、
    連続する区切り文字を 1 つの ``-`` にまとめて小文字化する。
    失敗することはない。
    """
    slug = _SEPARATORS.sub("-", text)
    slug = _UNSAFE.sub("", slug)
    slug = _REPEATED.sub("-", slug)
    return slug.strip("-").lower()
