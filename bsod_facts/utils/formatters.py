"""
Output formatters for extracted dump facts.

Provides functions to format results for different output types.
"""

import json
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bsod_facts.core.bugcheck_kb import BugcheckKnowledgeBase
from bsod_facts.core.format_detector import describe_machine_type
from bsod_facts.core.models import StructuredDumpInfo
from bsod_facts.knowledge.known_drivers import categorize_modules


console = Console()


def _hex(value: Optional[int]) -> Optional[str]:
    return f"0x{value:X}" if value is not None else None


def format_structured_dump_info(info: StructuredDumpInfo, dump_file: Optional[str] = None) -> Dict[str, Any]:
    """Format extracted facts as a JSON-safe dictionary.

    Args:
        info: StructuredDumpInfo to format
        dump_file: Source file path, if known

    Returns:
        Dictionary representation with integers rendered as hex strings
    """
    header = info.dump_header
    bug_check = info.bug_check_info
    exception = info.exception_info
    thread = info.thread_context

    return {
        "dump_file": dump_file,
        "header": {
            "signature": header.signature,
            "major_version": header.major_version,
            "minor_version": header.minor_version,
            "machine": describe_machine_type(header.machine_image_type) if header.machine_image_type is not None else None,
            "directory_table_base": _hex(header.directory_table_base),
            "pfn_database": _hex(header.pfn_database),
            "ps_loaded_module_list": _hex(header.ps_loaded_module_list),
            "version": header.version,
            "stream_count": header.stream_count,
            "checksum": _hex(header.checksum),
            "timestamp": header.timestamp.isoformat() if header.timestamp else None,
        } if header else None,
        "bugcheck": {
            "code": f"0x{bug_check.code:08X}",
            "name": bug_check.name,
            "parameters": [f"0x{p:X}" for p in bug_check.parameters],
            "source": bug_check.source,
            "validation": {
                "valid": bug_check.validation.valid,
                "errors": bug_check.validation.errors,
                "description": bug_check.validation.description,
            },
            "analysis": {
                "summary": bug_check.analysis.analysis,
                "severity": bug_check.analysis.severity.value,
                "likely_causes": bug_check.analysis.likely_causes,
            },
        } if bug_check else None,
        "exception": {
            "code": f"0x{exception.code:08X}",
            "name": exception.name,
            "address": _hex(exception.address),
            "parameters": [_hex(exception.parameter1), _hex(exception.parameter2)],
            "thread_id": exception.thread_id,
            "flags": _hex(exception.flags),
        } if exception else None,
        "thread": {
            "thread_id": thread.thread_id,
            "rip": _hex(thread.instruction_pointer),
            "rsp": _hex(thread.stack_pointer),
            "rbp": _hex(thread.frame_pointer),
            "priority": thread.priority,
        } if thread else None,
        "modules": [
            {
                "name": m.name,
                "base_address": _hex(m.base),
                "size": m.size,
            }
            for m in info.module_list
        ],
        "problem_drivers": [
            {
                "module": f.module_name,
                "display_name": f.display_name,
                "manufacturer": f.manufacturer,
                "category": f.category,
                "matches_bug_check": f.matches_bug_check,
                "issues": f.issues,
                "recommendations": f.recommendations,
            }
            for f in info.driver_findings
        ],
        "driver_categories": {
            category.value: names
            for category, names in categorize_modules(m.name for m in info.module_list).items()
            if names
        },
    }


def format_text_output(info: StructuredDumpInfo, dump_file: Optional[str] = None) -> str:
    """Format extracted facts as plain text.

    Args:
        info: StructuredDumpInfo to format
        dump_file: Source file path, if known

    Returns:
        Formatted text string
    """
    lines = [
        "=" * 70,
        "Windows蓝屏转储事实报告",
        "=" * 70,
        "",
    ]

    if dump_file:
        lines.append(f"  文件: {dump_file}")

    header = info.dump_header
    if header:
        lines.extend([
            "【转储头】",
            f"  签名: {header.signature}",
        ])
        if header.machine_image_type is not None:
            lines.append(f"  架构: {describe_machine_type(header.machine_image_type)}")
        if header.major_version is not None:
            lines.append(f"  版本: {header.major_version}.{header.minor_version}")
        if header.timestamp:
            lines.append(f"  时间: {header.timestamp}")
        lines.append("")

    bug_check = info.bug_check_info
    if bug_check:
        kb = BugcheckKnowledgeBase()
        lines.extend([
            "【崩溃信息】",
            f"  Bugcheck代码: 0x{bug_check.code:08X}",
            f"  名称: {bug_check.name}",
            f"  描述: {kb.get_description(bug_check.code)}",
            f"  参数: {', '.join(f'0x{p:X}' for p in bug_check.parameters)}",
            f"  参数有效: {'是' if bug_check.validation.valid else '否'}",
            f"  严重程度: {bug_check.analysis.severity.value}",
        ])
        for error in bug_check.validation.errors:
            lines.append(f"    - {error}")
        lines.append("")

        recommendations = kb.get_recommendations(bug_check.code)
        if recommendations:
            lines.append("【修复建议】")
            for i, rec in enumerate(recommendations, 1):
                lines.append(f"  {i}. {rec}")
            lines.append("")
    else:
        lines.extend(["【崩溃信息】", "  未找到可信的Bugcheck代码", ""])

    exception = info.exception_info
    if exception:
        lines.extend([
            "【异常记录】",
            f"  代码: 0x{exception.code:08X} ({exception.name})",
            f"  地址: 0x{exception.address:X}",
            "",
        ])

    thread = info.thread_context
    if thread:
        lines.extend([
            "【线程上下文】",
            f"  线程ID: {thread.thread_id}",
            f"  RIP: 0x{thread.instruction_pointer:X}",
            f"  RSP: 0x{thread.stack_pointer:X}",
            f"  RBP: 0x{thread.frame_pointer:X}",
            "",
        ])

    if info.driver_findings:
        lines.append("【已知问题驱动】")
        for finding in info.driver_findings:
            marker = " [与本次崩溃相关]" if finding.matches_bug_check else ""
            lines.append(f"  {finding.module_name} - {finding.display_name} ({finding.manufacturer}){marker}")
            for issue in finding.issues:
                lines.append(f"    - {issue}")
            if finding.recommendations:
                lines.append(f"    建议: {finding.recommendations[0]}")
        lines.append("")

    lines.append(f"【已加载模块】 ({len(info.module_list)})")
    for module in info.module_list:
        if module.base:
            lines.append(f"  {module.name}  0x{module.base:X}  {module.size:,} 字节")
        else:
            lines.append(f"  {module.name}")

    lines.append("")
    lines.append("=" * 70)

    return "\n".join(lines)


def display_structured_dump_info_rich(info: StructuredDumpInfo, dump_file: Optional[str] = None):
    """Display extracted facts using Rich formatting.

    Args:
        info: StructuredDumpInfo to display
        dump_file: Source file path, if known
    """
    info_table = Table(show_header=False, box=None, padding=(0, 2))
    if dump_file:
        info_table.add_row("文件:", dump_file)
    if info.dump_header:
        info_table.add_row("签名:", info.dump_header.signature)
        if info.dump_header.machine_image_type is not None:
            info_table.add_row("架构:", describe_machine_type(info.dump_header.machine_image_type))
        if info.dump_header.timestamp:
            info_table.add_row("时间:", str(info.dump_header.timestamp))
    console.print(Panel(info_table, title="基本信息", border_style="bold cyan"))

    bug_check = info.bug_check_info
    if bug_check:
        crash_table = Table(title="崩溃信息", show_header=True, box=None)
        crash_table.add_column("项目", style="cyan")
        crash_table.add_column("值", style="yellow")
        crash_table.add_row("Bugcheck代码", f"0x{bug_check.code:08X}")
        crash_table.add_row("名称", bug_check.name)
        for i, p in enumerate(bug_check.parameters, 1):
            crash_table.add_row(f"参数{i}", f"0x{p:X}")
        crash_table.add_row("来源", bug_check.source)
        console.print(crash_table)

        validity_style = "green" if bug_check.validation.valid else "red"
        analysis_text = bug_check.analysis.analysis
        if bug_check.analysis.likely_causes:
            analysis_text += "\n\n" + "\n".join(f"- {c}" for c in bug_check.analysis.likely_causes)
        console.print(Panel(
            analysis_text,
            title=f"参数分析 ({bug_check.analysis.severity.value})",
            border_style=f"bold {validity_style}",
        ))

        recommendations = BugcheckKnowledgeBase().get_recommendations(bug_check.code)
        if recommendations:
            rec_text = "\n".join(f"{i+1}. {rec}" for i, rec in enumerate(recommendations))
            console.print(Panel(rec_text, title="修复建议", border_style="bold green"))
    else:
        console.print("[yellow]未找到可信的Bugcheck代码[/yellow]")

    if info.exception_info:
        exception = info.exception_info
        console.print(
            f"\n异常: [red]0x{exception.code:08X}[/red] {exception.name} "
            f"@ [yellow]0x{exception.address:X}[/yellow]"
        )

    if info.thread_context:
        thread = info.thread_context
        console.print(
            f"线程 {thread.thread_id}: RIP=0x{thread.instruction_pointer:X} "
            f"RSP=0x{thread.stack_pointer:X} RBP=0x{thread.frame_pointer:X}"
        )

    if info.driver_findings:
        driver_table = Table(title="已知问题驱动", show_header=True)
        driver_table.add_column("驱动", style="red")
        driver_table.add_column("名称")
        driver_table.add_column("厂商")
        driver_table.add_column("类别")
        driver_table.add_column("相关", justify="center")
        for finding in info.driver_findings:
            driver_table.add_row(
                finding.module_name,
                finding.display_name,
                finding.manufacturer,
                finding.category,
                "是" if finding.matches_bug_check else "-",
            )
        console.print(driver_table)

    if info.module_list:
        module_table = Table(title=f"已加载模块 ({len(info.module_list)})", show_header=True)
        module_table.add_column("名称", style="cyan")
        module_table.add_column("基地址", style="yellow")
        module_table.add_column("大小", justify="right")
        for module in info.module_list:
            module_table.add_row(
                module.name,
                f"0x{module.base:X}" if module.base else "-",
                f"{module.size:,}" if module.size else "-",
            )
        console.print(module_table)


def save_result_to_file(
    info: StructuredDumpInfo,
    output_path: str,
    output_format: str = "text",
    dump_file: Optional[str] = None,
):
    """Save extracted facts to file.

    Args:
        info: StructuredDumpInfo to save
        output_path: Path to output file
        output_format: Format type (text, json)
        dump_file: Source file path, if known
    """
    if output_format == "json":
        data = format_structured_dump_info(info, dump_file)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    elif output_format == "text":
        text = format_text_output(info, dump_file)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        raise ValueError(f"Unsupported output format: {output_format}")
