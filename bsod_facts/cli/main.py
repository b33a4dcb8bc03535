"""
CLI main entry point for BSOD Facts.

Command-line interface for extracting facts from Windows crash dump files.
"""

import sys

# 设置 UTF-8 输出编码（Windows 兼容）
if sys.platform == "win32":
    import io
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

import json
from typing import Optional

import click
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bsod_facts.core.bugcheck_kb import BugcheckKnowledgeBase, get_bug_check_name
from bsod_facts.core.format_detector import validate_dump_file
from bsod_facts.core.parser import extract_structured_dump_info, read_dump_file
from bsod_facts.knowledge.crash_patterns import get_analysis_strategy, get_parameter_explanation
from bsod_facts.knowledge.known_drivers import get_drivers_for_bug_check
from bsod_facts.utils.config import get_config
from bsod_facts.utils.formatters import (
    display_structured_dump_info_rich,
    format_structured_dump_info,
    save_result_to_file,
)

console = Console()


def configure_logging(verbose: bool = False):
    """Route loguru output according to configuration."""
    cfg = get_config()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else cfg.log_level.upper())
    if cfg.log_file:
        logger.add(cfg.log_file, level="DEBUG", rotation="10 MB", encoding="utf-8")


def parse_int(value: str) -> int:
    """Parse a decimal or 0x-prefixed integer argument."""
    try:
        return int(value, 0)
    except ValueError:
        raise click.BadParameter(f"不是有效的整数: {value}")


@click.group()
@click.version_option(version="1.0.0")
@click.option("--verbose", "-v", is_flag=True, help="启用详细日志")
def cli(verbose: bool):
    """BSOD Facts - Windows蓝屏转储事实提取工具

    从Windows崩溃转储文件中提取Bugcheck代码、参数、异常、模块和线程信息。
    """
    configure_logging(verbose)


@cli.command()
@click.argument("dump_file", type=click.Path(exists=True, dir_okay=False))
def validate(dump_file: str):
    """检查文件是否为可识别的转储格式

    示例:
        bsod-facts validate MEMORY.DMP
    """
    with open(dump_file, "rb") as f:
        head = f.read(8)

    result = validate_dump_file(head)
    if result.is_valid:
        console.print(f"[green]✓[/green] {dump_file}: {result.file_type}")
    else:
        console.print(f"[red]✗ {dump_file}: {result.error}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("dump_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(), help="输出文件路径")
@click.option("--format", "-f", type=click.Choice(["json", "text"]), default="text", help="输出格式")
def analyze(dump_file: str, output: Optional[str], format: str):
    """提取单个dump文件中的事实

    示例:
        bsod-facts analyze dump.dmp
        bsod-facts analyze dump.dmp -o report.json -f json
    """
    try:
        data = read_dump_file(dump_file, get_config().get_max_dump_size())

        validation = validate_dump_file(data)
        if not validation.is_valid:
            console.print(f"[red]错误: {validation.error}[/red]")
            sys.exit(1)

        with console.status("[bold green]解析dump文件...", spinner="dots"):
            info = extract_structured_dump_info(data)

        if format == "json":
            payload = format_structured_dump_info(info, dump_file)
            console.print_json(json.dumps(payload, ensure_ascii=False, indent=2))
        else:
            display_structured_dump_info_rich(info, dump_file)

        if output:
            save_result_to_file(info, output, format, dump_file)
            console.print(f"[green]✓[/green] 结果已保存到: {output}")

    except FileNotFoundError as e:
        console.print(f"[red]错误: 文件未找到 - {e}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]错误: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("code")
@click.argument("param", type=click.IntRange(1, 4))
@click.argument("value")
def explain(code: str, param: int, value: str):
    """解释某个Bugcheck参数的含义

    示例:
        bsod-facts explain 0xA 2 2
        bsod-facts explain 0x139 1 0x3
    """
    bug_check_code = parse_int(code)
    explanation = get_parameter_explanation(bug_check_code, param, parse_int(value))

    console.print(Panel(
        explanation.rstrip(),
        title=f"{get_bug_check_name(bug_check_code)} 参数{param}",
        border_style="bold cyan",
    ))


@cli.command()
@click.argument("code")
def strategy(code: str):
    """显示某个Bugcheck代码的排查策略

    示例:
        bsod-facts strategy 0x124
    """
    bug_check_code = parse_int(code)
    plan = get_analysis_strategy(bug_check_code)
    kb = BugcheckKnowledgeBase()

    table = Table(title=f"0x{bug_check_code:08X} {get_bug_check_name(bug_check_code)}", show_header=True)
    table.add_column("项目", style="cyan")
    table.add_column("值", style="yellow")
    table.add_row("优先级", plan.priority.value)
    table.add_row("重点方向", "\n".join(plan.focus_areas))
    table.add_row("所需工具", "\n".join(plan.tools_needed))

    causes = kb.get_common_causes(bug_check_code)
    if causes:
        table.add_row("常见原因", "\n".join(causes))

    steps = kb.get_diagnostic_steps(bug_check_code)
    if steps:
        table.add_row("诊断步骤", "\n".join(steps))

    console.print(table)


@cli.command()
@click.argument("code")
def drivers(code: str):
    """列出常导致某个Bugcheck的已知问题驱动

    示例:
        bsod-facts drivers 0xD1
    """
    bug_check_code = parse_int(code)
    known = get_drivers_for_bug_check(bug_check_code)

    if not known:
        console.print(f"[yellow]没有与 0x{bug_check_code:08X} 关联的已知问题驱动[/yellow]")
        return

    table = Table(title=f"0x{bug_check_code:08X} {get_bug_check_name(bug_check_code)}", show_header=True)
    table.add_column("驱动", style="cyan")
    table.add_column("名称")
    table.add_column("厂商")
    table.add_column("类别")
    table.add_column("建议", style="green")

    for driver in known:
        table.add_row(
            driver.name,
            driver.display_name,
            driver.manufacturer,
            driver.category.value,
            driver.recommendations[0] if driver.recommendations else "-",
        )

    console.print(table)


@cli.command()
def config():
    """显示当前配置"""
    cfg = get_config()

    table = Table(title="当前配置", show_header=True)
    table.add_column("配置项", style="cyan")
    table.add_column("值", style="yellow")

    table.add_row("日志级别", cfg.log_level)
    table.add_row("日志文件", cfg.log_file or "未配置")
    table.add_row("最大转储大小", f"{cfg.max_dump_size_mb} MB")
    table.add_row("模块数量上限", str(cfg.module_limit))
    table.add_row("模块扫描范围", f"{cfg.module_scan_bytes:,} 字节")
    table.add_row("Bugcheck扫描范围", f"{cfg.bugcheck_scan_bytes:,} 字节")
    table.add_row("额外伪造模块名", ", ".join(cfg.extra_fabricated_module_names) or "无")
    table.add_row(
        "额外伪造Bugcheck代码",
        ", ".join(f"0x{c:X}" for c in cfg.extra_fabricated_bug_check_codes) or "无",
    )

    console.print(table)
    console.print("\n提示: 通过.env文件或BSOD_FACTS_前缀的环境变量修改配置")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
