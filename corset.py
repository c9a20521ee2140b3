"""
Squeeze SCP files under the AWS size limit.

Reads one policy file, or every policy file in a directory, repacks all of
their statements into at most five minified documents and writes them back
out, optionally replacing the originals.
"""

import json
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Sequence

import typer

from policy_split import (
    DEFAULT_MAX_FILES,
    MAX_ALLOWED_FILES,
    MAX_POLICY_SIZE,
    Statement,
    assemble_policy,
    base_size_for,
    extract_policy_files,
    pack_statements,
)

DEFAULT_OUTPUT_PREFIX = 'corset'

app = typer.Typer(help="Minify and repack AWS service control policies.", add_completion=False)


class CorsetError(Exception):
    """Terminal outcome that stops the run without writing anything."""


@dataclass
class WriteResult:
    filename: str
    size: int
    statements: int


def find_json_files(directory: str) -> List[str]:
    """Find all .json files under a directory, in lexical order."""
    json_files = []
    for root, dirs, files in os.walk(directory):
        dirs.sort()
        for name in sorted(files):
            if name.endswith('.json'):
                json_files.append(os.path.join(root, name))
    return json_files


def output_filename(target: str, is_directory: bool, replace: bool, output_dir: str,
                    file_num: int, input_files: Sequence[str]) -> str:
    """Name the file_num-th output file (1-based)."""
    if replace and not is_directory and len(input_files) == 1:
        # Single file: first output overwrites the original
        original = input_files[0]
        if file_num == 1:
            return original
        stem, ext = os.path.splitext(original)
        return f"{stem}-{file_num}{ext}"

    if replace and is_directory:
        # Directory: outputs are named after the directory
        base_name = os.path.basename(os.path.abspath(target))
        if file_num == 1:
            return os.path.join(output_dir, f"{base_name}.json")
        return os.path.join(output_dir, f"{base_name}-{file_num}.json")

    return os.path.join(output_dir, f"{DEFAULT_OUTPUT_PREFIX}{file_num}.json")


def write_output_file(filename: str, statements: Sequence[Statement], whitespace: bool) -> int:
    """Write one policy document and return its size in characters."""
    data, size = assemble_policy(statements, whitespace)
    with open(filename, 'wb') as f:
        f.write(data)

    if size > MAX_POLICY_SIZE:
        # Only reachable with whitespace, packing counts minified statements
        print(f"Warning: '{filename}' is {size} characters, over the {MAX_POLICY_SIZE} limit", file=sys.stderr)
    return size


def write_output_files(target: str, is_directory: bool, replace: bool, whitespace: bool,
                       packed_files: Sequence[Sequence[Statement]], output_dir: str,
                       input_files: Sequence[str]) -> List[WriteResult]:
    results = []
    for i, statements in enumerate(packed_files, start=1):
        filename = output_filename(target, is_directory, replace, output_dir, i, input_files)
        size = write_output_file(filename, statements, whitespace)
        results.append(WriteResult(filename=filename, size=size, statements=len(statements)))
        print(f"Info: Wrote '{filename}' ({size} characters, {len(statements)} statements)", file=sys.stderr)
    return results


def replace_input_files(input_files: Sequence[str], written_files: Sequence[str]) -> List[str]:
    """Delete the original files, keeping any that were just rewritten as outputs."""
    keep = {os.path.abspath(f) for f in written_files}
    removed = []
    for input_file in input_files:
        if os.path.abspath(input_file) in keep:
            continue
        os.remove(input_file)
        removed.append(input_file)
        print(f"Info: Removed original '{input_file}'", file=sys.stderr)
    return removed


def process_files(target: str, files: Sequence[str], is_directory: bool = False, replace: bool = False,
                  whitespace: bool = False, max_files: int = DEFAULT_MAX_FILES) -> List[WriteResult]:
    """Extract, pack and write out the statements of the given policy files.

    Raises CorsetError when there is nothing to pack or the statements do not
    fit in max_files documents. Nothing is written or removed in that case.
    """
    extracted = extract_policy_files(files)
    statements = [stmt for _, file_statements in extracted for stmt in file_statements]
    if not statements:
        raise CorsetError("No policy statements found")

    print(f"Info: Packing {len(statements)} statements into at most {max_files} files", file=sys.stderr)
    packed_files = pack_statements(statements, base_size_for(whitespace), max_files)
    if packed_files is None:
        largest = max(stmt.size for stmt in statements)
        raise CorsetError(
            f"Statements do not fit in {max_files} files of {MAX_POLICY_SIZE} characters "
            f"(largest statement is {largest} characters)"
        )

    output_dir = target if is_directory else os.path.dirname(files[0])
    results = write_output_files(target, is_directory, replace, whitespace, packed_files, output_dir, files)

    if replace and is_directory:
        # Files that contributed nothing stay where they are
        sources = [path for path, file_statements in extracted if file_statements]
        for path in files:
            if path not in sources:
                print(f"Warning: Keeping '{path}', no statements were taken from it", file=sys.stderr)
        replace_input_files(sources, [result.filename for result in results])

    return results


def report_results(results: Sequence[WriteResult]):
    plural = '' if len(results) == 1 else 's'
    typer.echo(f"Split into {len(results)} file{plural}:")
    for result in results:
        typer.echo(f"- {os.path.basename(result.filename)} "
                   f"({result.size} characters, {result.statements} statements)")


def report_results_json(results: Sequence[WriteResult]):
    typer.echo(json.dumps({
        'files': [asdict(result) for result in results],
        'total_statements': sum(result.statements for result in results)
    }, indent=2))


@app.command()
def main(
    target: Path = typer.Argument(..., exists=True, help="Policy file or directory of policy files"),
    replace: bool = typer.Option(False, "--replace", "-r", help="Replace the original files"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before replacing"),
    whitespace: bool = typer.Option(False, "--whitespace", "-w", help="Indent the output with 2 spaces"),
    max_files: int = typer.Option(DEFAULT_MAX_FILES, "--max-files", "-m", min=1, max=MAX_ALLOWED_FILES,
                                  help="Maximum number of output files"),
    json_output: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
):
    """Repack the statements of TARGET into as few SCP documents as possible."""
    target_path = str(target)
    is_directory = target.is_dir()

    if replace and not yes:
        if not typer.confirm("This will replace the original files. Continue?"):
            typer.echo("Operation cancelled.")
            raise typer.Exit()

    if is_directory:
        files = find_json_files(target_path)
        print(f"Info: Found {len(files)} policy files in '{target_path}'", file=sys.stderr)
    else:
        files = [target_path]

    try:
        results = process_files(target_path, files, is_directory=is_directory, replace=replace,
                                whitespace=whitespace, max_files=max_files)
    except CorsetError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except OSError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if json_output:
        report_results_json(results)
    else:
        report_results(results)


if __name__ == '__main__':
    app()
