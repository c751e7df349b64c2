"""
APEX Pipeline Simulator
============================================================
A pure-Python, cycle-by-cycle model of the 5-stage in-order APEX pipeline.

  Fetch     : reads the Instruction Table at PC, handles branch bubbles
  Decode/RF : operand read through the forwarding scoreboard
  Execute   : ALU, flags, address generation, branch / jump resolution
  Memory    : data memory load / store
  Writeback : commits results and retires instructions

Stages are invoked tail-to-head (Writeback first, Fetch last) once per clock
cycle, so each stage observes the latch written by its predecessor on the
previous cycle before that latch is overwritten.

Run:
    apex-sim                                   # runs built-in demo program
    apex-sim program.asm simulate              # full-speed run
    apex-sim program.asm display --cycles 20   # per-cycle stage trace
    apex-sim program.asm single_step           # press <Enter> per cycle
"""

from __future__ import annotations
import argparse
import sys
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

# ─────────────────────────────────────────────────────────────────────────────
# Architectural constants & helpers
# ─────────────────────────────────────────────────────────────────────────────

BASE_ADDRESS = 4000
INSTRUCTION_SIZE = 4
REG_FILE_SIZE = 16
DATA_MEMORY_SIZE = 4096

MODES = ("simulate", "display", "single_step")


def to_signed_32(value: int) -> int:
    """Interpret an unsigned 32-bit value as signed."""
    v = value & 0xFFFFFFFF
    if v & 0x80000000:
        return v - 0x100000000
    return v


class SimulatorError(Exception):
    """Base class for every error raised by the simulator."""


class ProgramError(SimulatorError):
    """Program text could not be read or parsed."""


class PipelineFault(SimulatorError):
    """Out-of-range instruction fetch, register or data memory access."""


class ConfigurationError(SimulatorError):
    """Bad machine configuration or an opcode no stage knows how to handle."""

# ─────────────────────────────────────────────────────────────────────────────
# ISA: opcodes and operand layouts
# ─────────────────────────────────────────────────────────────────────────────

class Opcode:
    """Numeric APEX opcodes."""

    ADD   = 0x00
    SUB   = 0x01
    MUL   = 0x02
    AND   = 0x03
    OR    = 0x04
    XOR   = 0x05
    ADDL  = 0x06
    SUBL  = 0x07
    MOVC  = 0x08
    LOAD  = 0x09
    LDI   = 0x0A
    STORE = 0x0B
    STI   = 0x0C
    CMP   = 0x0D
    BZ    = 0x0E
    BNZ   = 0x0F
    BP    = 0x10
    BNP   = 0x11
    JUMP  = 0x12
    NOP   = 0x13
    HALT  = 0x14


OPCODES: Dict[str, int] = {
    name: value for name, value in vars(Opcode).items() if name.isupper()
}
MNEMONICS: Dict[int, str] = {value: name for name, value in OPCODES.items()}

# Fields named by each operand of the text form, in order.
OPERAND_LAYOUT: Dict[int, Tuple[str, ...]] = {
    Opcode.ADD:   ("rd", "rs1", "rs2"),
    Opcode.SUB:   ("rd", "rs1", "rs2"),
    Opcode.MUL:   ("rd", "rs1", "rs2"),
    Opcode.AND:   ("rd", "rs1", "rs2"),
    Opcode.OR:    ("rd", "rs1", "rs2"),
    Opcode.XOR:   ("rd", "rs1", "rs2"),
    Opcode.ADDL:  ("rd", "rs1", "imm"),
    Opcode.SUBL:  ("rd", "rs1", "imm"),
    Opcode.MOVC:  ("rd", "imm"),
    Opcode.LOAD:  ("rd", "rs1", "imm"),
    Opcode.LDI:   ("rd", "rs1", "imm"),
    Opcode.STORE: ("rs2", "rs1", "imm"),
    Opcode.STI:   ("rs2", "rs1", "imm"),
    Opcode.CMP:   ("rs1", "rs2"),
    Opcode.BZ:    ("imm",),
    Opcode.BNZ:   ("imm",),
    Opcode.BP:    ("imm",),
    Opcode.BNP:   ("imm",),
    Opcode.JUMP:  ("rs1", "imm"),
    Opcode.NOP:   (),
    Opcode.HALT:  (),
}

REG_ARITH = frozenset({Opcode.ADD, Opcode.SUB, Opcode.MUL,
                       Opcode.AND, Opcode.OR, Opcode.XOR})
IMM_ARITH = frozenset({Opcode.ADDL, Opcode.SUBL})
BITWISE   = frozenset({Opcode.AND, Opcode.OR, Opcode.XOR})
LOADS     = frozenset({Opcode.LOAD, Opcode.LDI})
STORES    = frozenset({Opcode.STORE, Opcode.STI})
BRANCHES  = frozenset({Opcode.BZ, Opcode.BNZ, Opcode.BP, Opcode.BNP})
POST_INCREMENT = frozenset({Opcode.LDI, Opcode.STI})
WRITES_RD = REG_ARITH | IMM_ARITH | LOADS | {Opcode.MOVC}


def operand_layout(opcode: int) -> Tuple[str, ...]:
    try:
        return OPERAND_LAYOUT[opcode]
    except KeyError:
        raise ConfigurationError(f"unrecognized opcode {opcode!r}") from None

# ─────────────────────────────────────────────────────────────────────────────
# ALU
# ─────────────────────────────────────────────────────────────────────────────

class ALU:
    """
    32-bit integer ALU for the APEX arithmetic and logic opcodes.
    Results wrap to signed 32-bit like the C ``int`` of the reference machine.
    """

    _OPS = {
        Opcode.ADD:  lambda a, b: a + b,
        Opcode.ADDL: lambda a, b: a + b,
        Opcode.SUB:  lambda a, b: a - b,
        Opcode.SUBL: lambda a, b: a - b,
        Opcode.MUL:  lambda a, b: a * b,
        Opcode.AND:  lambda a, b: a & b,
        Opcode.OR:   lambda a, b: a | b,
        Opcode.XOR:  lambda a, b: a ^ b,
    }

    @staticmethod
    def execute(op: int, a: int, b: int) -> int:
        try:
            fn = ALU._OPS[op]
        except KeyError:
            raise ConfigurationError(
                f"opcode {MNEMONICS.get(op, op)} has no ALU operation") from None
        return to_signed_32(fn(a, b))

# ─────────────────────────────────────────────────────────────────────────────
# Instruction Table
# ─────────────────────────────────────────────────────────────────────────────

class Instruction(NamedTuple):
    """One decoded program slot. Immutable for the lifetime of a run."""

    opcode: int
    rd: int = 0
    rs1: int = 0
    rs2: int = 0
    imm: int = 0
    mnemonic: str = ""

    def __str__(self):
        parts = [self.mnemonic or MNEMONICS.get(self.opcode, "???")]
        for field in OPERAND_LAYOUT.get(self.opcode, ()):
            if field == "imm":
                parts.append(f"#{self.imm}")
            else:
                parts.append(f"R{getattr(self, field)}")
        return ",".join(parts)


def _parse_operand(token: str, field: str, register_count: int) -> int:
    if field == "imm":
        if not token.startswith("#"):
            raise ValueError(f"expected literal '#<n>', got {token!r}")
        return int(token[1:])
    if token[:1] not in ("R", "r"):
        raise ValueError(f"expected register 'R<n>', got {token!r}")
    reg = int(token[1:])
    if not 0 <= reg < register_count:
        raise ValueError(f"register {token} out of range R0-R{register_count - 1}")
    return reg


def parse_program(lines: Iterable[str], source: str = "<program>",
                  register_count: int = REG_FILE_SIZE) -> List[Instruction]:
    """
    Turn APEX assembly text (``MOVC,R0,#5`` per line) into an Instruction
    Table. Blank lines and lines starting with ``#`` are skipped.
    """
    program: List[Instruction] = []
    for lineno, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        tokens = [t.strip() for t in line.split(",")]
        mnemonic = tokens[0].upper()
        if mnemonic not in OPCODES:
            raise ProgramError(f"{source}:{lineno}: unknown instruction {tokens[0]!r}")
        opcode = OPCODES[mnemonic]
        layout = OPERAND_LAYOUT[opcode]
        operands = tokens[1:]
        if len(operands) != len(layout):
            raise ProgramError(
                f"{source}:{lineno}: {mnemonic} takes {len(layout)} operand(s), "
                f"got {len(operands)}")
        fields = {}
        for token, field in zip(operands, layout):
            try:
                fields[field] = _parse_operand(token, field, register_count)
            except ValueError as e:
                raise ProgramError(f"{source}:{lineno}: {e}") from e
        program.append(Instruction(opcode=opcode, mnemonic=mnemonic, **fields))
    return program


def load_program(path: str, register_count: int = REG_FILE_SIZE) -> List[Instruction]:
    """Read and parse an APEX program file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            program = parse_program(f, source=path, register_count=register_count)
    except OSError as e:
        raise ProgramError(f"cannot read program {path}: {e.strerror}") from e
    except UnicodeDecodeError as e:
        raise ProgramError(f"{path}: not a UTF-8 text file ({e.reason} at byte {e.start})") from e
    if not program:
        raise ProgramError(f"{path}: program contains no instructions")
    return program

# ─────────────────────────────────────────────────────────────────────────────
# Stage latches
# ─────────────────────────────────────────────────────────────────────────────

class StageLatch:
    """
    Per-stage holding record. ``has_instruction`` tells whether the latch
    carries a live instruction; clearing it is how a stage is flushed.
    """

    __slots__ = ("name", "has_instruction", "program_counter", "sequence",
                 "opcode", "rd", "rs1", "rs2", "imm", "mnemonic",
                 "rs1_value", "rs2_value", "result", "memory_address",
                 "increment_value")

    def __init__(self, name: str):
        self.name = name
        self.has_instruction = False
        self.program_counter = 0
        self.sequence = 0
        self.opcode = Opcode.NOP
        self.rd = 0
        self.rs1 = 0
        self.rs2 = 0
        self.imm = 0
        self.mnemonic = ""
        self.rs1_value = 0
        self.rs2_value = 0
        self.result = 0
        self.memory_address = 0
        self.increment_value = 0

    def load(self, inst: Instruction, pc: int, sequence: int):
        """Fill the latch from an Instruction Table entry (Fetch only)."""
        self.has_instruction = True
        self.program_counter = pc
        self.sequence = sequence
        self.opcode = inst.opcode
        self.rd = inst.rd
        self.rs1 = inst.rs1
        self.rs2 = inst.rs2
        self.imm = inst.imm
        self.mnemonic = inst.mnemonic or MNEMONICS.get(inst.opcode, "")
        self.rs1_value = 0
        self.rs2_value = 0
        self.result = 0
        self.memory_address = 0
        self.increment_value = 0

    def copy_from(self, other: "StageLatch"):
        for slot in self.__slots__[1:]:
            setattr(self, slot, getattr(other, slot))

    def flush(self):
        self.has_instruction = False

    @property
    def instruction(self) -> Instruction:
        return Instruction(self.opcode, self.rd, self.rs1, self.rs2,
                           self.imm, self.mnemonic)

    def __repr__(self):
        if not self.has_instruction:
            return f"<{self.name}: empty>"
        return f"<{self.name}: pc({self.program_counter}) {self.instruction}>"

# ─────────────────────────────────────────────────────────────────────────────
# Scoreboard (forwarding)
# ─────────────────────────────────────────────────────────────────────────────

class HazardRecord(NamedTuple):
    """A forwarding pattern the single-slot scoreboard cannot model exactly."""

    cycle: int
    kind: str          # "double-producer" or "load-use"
    register: int
    producer_pc: int
    other_pc: int      # second producer, or the consuming instruction


class Scoreboard:
    """
    Per-register ``{pending, forwarded_value}`` map.

    A register is pending from the cycle its producer completes Execute
    until that producer completes Writeback. Only one producer is tracked
    per register: a second claim overwrites the first.
    """

    def __init__(self, size: int):
        self.pending: List[bool] = [False] * size
        self.forwarded: List[int] = [0] * size
        self.ready: List[bool] = [True] * size
        self.producer_pc: List[int] = [0] * size
        self._producer_seq: List[int] = [0] * size

    def read(self, reg: int, committed: int) -> int:
        """Forwarded value when ``reg`` is pending, else the committed one."""
        if self.pending[reg]:
            return self.forwarded[reg]
        return committed

    def claim(self, reg: int, value: int, pc: int, sequence: int,
              ready: bool = True) -> Optional[int]:
        """
        Mark ``reg`` pending for the producer at ``pc``. Returns the PC of a
        different producer that was still in flight for ``reg``, if any.
        """
        displaced = None
        if self.pending[reg] and self._producer_seq[reg] != sequence:
            displaced = self.producer_pc[reg]
        self.pending[reg] = True
        self.forwarded[reg] = value
        self.ready[reg] = ready
        self.producer_pc[reg] = pc
        self._producer_seq[reg] = sequence
        return displaced

    def publish(self, reg: int, value: int, sequence: int):
        """Late result (loads): refresh the value if this producer still owns ``reg``."""
        if self.pending[reg] and self._producer_seq[reg] == sequence:
            self.forwarded[reg] = value
            self.ready[reg] = True

    def release(self, reg: int):
        self.pending[reg] = False
        self.ready[reg] = True

# ─────────────────────────────────────────────────────────────────────────────
# APEX CPU
# ─────────────────────────────────────────────────────────────────────────────

class APEXCPU:
    """
    5-stage in-order APEX pipeline with eager Execute→Decode forwarding.

    All machine state lives on the instance; stage handlers read and write
    it directly, so several CPUs can be simulated side by side.
    """

    # Invocation order within one clock cycle: tail-to-head.
    STAGE_ORDER = ("writeback", "memory", "execute", "decode", "fetch")

    def __init__(self, program: List[Instruction], mode: str = "simulate",
                 cycles: Optional[int] = None, *,
                 legacy_flags: bool = False,
                 legacy_nop_jump: bool = False,
                 verbose: Optional[bool] = None,
                 base_address: int = BASE_ADDRESS,
                 register_count: int = REG_FILE_SIZE,
                 memory_size: int = DATA_MEMORY_SIZE):
        if mode not in MODES:
            raise ConfigurationError(
                f"unknown mode {mode!r}, expected one of {', '.join(MODES)}")
        if cycles is not None and cycles < 0:
            raise ConfigurationError(f"cycle budget must be >= 0, got {cycles}")

        # Memories
        self.code_memory: Tuple[Instruction, ...] = tuple(program)
        self.base_address = base_address
        self.data_memory: List[int] = [0] * memory_size
        self.regs: List[int] = [0] * register_count
        self.scoreboard = Scoreboard(register_count)

        # Pipeline latches
        self.fetch = StageLatch("Fetch")
        self.decode = StageLatch("Decode/RF")
        self.execute = StageLatch("Execute")
        self.memory = StageLatch("Memory")
        self.writeback = StageLatch("Writeback")

        # Machine state
        self.pc = base_address
        self.clock_cycle = 0
        self.zero_flag = False
        self.positive_flag = False
        self.fetch_suspended_one_cycle = False
        self.instructions_retired_count = 0
        self.cycle_limit = cycles
        self.run_mode = mode
        self.legacy_flags = legacy_flags
        self.legacy_nop_jump = legacy_nop_jump
        self.verbose = (mode != "simulate") if verbose is None else verbose
        self.halted = False
        self.stop_reason: Optional[str] = None

        # Stats
        self.fetch_count = 0
        self.flush_count = 0
        self.bubble_count = 0
        self.hazard_log: List[HazardRecord] = []

        # To start fetch stage
        self.fetch.has_instruction = True

    # ── Memory / register helpers ───────────────────────────────────────

    def _instruction_at(self, pc: int) -> Instruction:
        offset = pc - self.base_address
        index = offset // INSTRUCTION_SIZE
        if offset < 0 or offset % INSTRUCTION_SIZE or index >= len(self.code_memory):
            raise PipelineFault(
                f"fetch from pc({pc}) outside the instruction table "
                f"[{self.base_address}, "
                f"{self.base_address + INSTRUCTION_SIZE * len(self.code_memory)})")
        return self.code_memory[index]

    def _check_register(self, reg: int):
        if not 0 <= reg < len(self.regs):
            raise PipelineFault(f"register R{reg} out of range")

    def mem_read(self, address: int) -> int:
        if not 0 <= address < len(self.data_memory):
            raise PipelineFault(f"load from address {address} outside data memory")
        return self.data_memory[address]

    def mem_write(self, address: int, value: int):
        if not 0 <= address < len(self.data_memory):
            raise PipelineFault(f"store to address {address} outside data memory")
        self.data_memory[address] = value

    # ── Scoreboard helpers ──────────────────────────────────────────────

    def _read_operand(self, reg: int, consumer: StageLatch) -> int:
        self._check_register(reg)
        sb = self.scoreboard
        if sb.pending[reg] and not sb.ready[reg]:
            self._flag_hazard("load-use", reg, sb.producer_pc[reg],
                              consumer.program_counter)
        return sb.read(reg, self.regs[reg])

    def _claim(self, reg: int, value: int, latch: StageLatch, ready: bool = True):
        self._check_register(reg)
        displaced = self.scoreboard.claim(reg, value, latch.program_counter,
                                          latch.sequence, ready)
        if displaced is not None:
            self._flag_hazard("double-producer", reg, displaced,
                              latch.program_counter)

    def _flag_hazard(self, kind: str, reg: int, producer_pc: int, other_pc: int):
        record = HazardRecord(self.clock_cycle, kind, reg, producer_pc, other_pc)
        self.hazard_log.append(record)
        if self.verbose:
            print(f"  [hazard] cycle {record.cycle}: {kind} on R{reg} "
                  f"(producer pc({producer_pc}), pc({other_pc}))")

    # ── Flags / control flow ────────────────────────────────────────────

    def _set_arith_flags(self, op: int, result: int):
        if self.legacy_flags:
            if op in BITWISE:
                return
            # Negative results also raise the positive flag.
            self.zero_flag = result == 0
            self.positive_flag = result != 0
        else:
            self.zero_flag = result == 0
            self.positive_flag = result > 0

    def _branch_taken(self, op: int) -> bool:
        if op == Opcode.BZ:
            return self.zero_flag
        if op == Opcode.BNZ:
            return not self.zero_flag
        if op == Opcode.BP:
            return self.positive_flag
        return not self.positive_flag  # BNP

    def _redirect(self, target: int):
        """Send ``target`` to Fetch: one bubble, squash the wrong-path Decode."""
        self.pc = target
        self.fetch_suspended_one_cycle = True
        self.decode.flush()
        self.fetch.has_instruction = True
        self.flush_count += 1

    # ── Pipeline stages ─────────────────────────────────────────────────

    def _stage_fetch(self):
        """IF: read the Instruction Table at PC into the Fetch latch."""
        if not self.fetch.has_instruction:
            return

        # Branch resolved this cycle: fetch from the new PC next cycle
        if self.fetch_suspended_one_cycle:
            self.fetch_suspended_one_cycle = False
            self.bubble_count += 1
            return

        inst = self._instruction_at(self.pc)
        self.fetch_count += 1
        self.fetch.load(inst, self.pc, self.fetch_count)
        self.pc += INSTRUCTION_SIZE
        self.decode.copy_from(self.fetch)
        self._trace("Fetch", self.fetch)

        # Stop fetching once HALT is in the pipe
        if inst.opcode == Opcode.HALT:
            self.fetch.has_instruction = False

    def _stage_decode(self):
        """ID/RF: read source operands, preferring in-flight values."""
        latch = self.decode
        if not latch.has_instruction:
            return

        layout = operand_layout(latch.opcode)
        if "rs1" in layout:
            latch.rs1_value = self._read_operand(latch.rs1, latch)
        if "rs2" in layout:
            latch.rs2_value = self._read_operand(latch.rs2, latch)

        self.execute.copy_from(latch)
        latch.has_instruction = False
        self._trace("Decode/RF", self.execute)

    def _stage_execute(self):
        """EX: ALU, flags, address generation and branch resolution."""
        latch = self.execute
        if not latch.has_instruction:
            return

        op = latch.opcode
        if op in REG_ARITH or op in IMM_ARITH:
            b = latch.rs2_value if op in REG_ARITH else latch.imm
            latch.result = ALU.execute(op, latch.rs1_value, b)
            self._set_arith_flags(op, latch.result)
            self._claim(latch.rd, latch.result, latch)

        elif op == Opcode.MOVC:
            latch.result = latch.imm
            self.zero_flag = latch.result == 0
            self._claim(latch.rd, latch.result, latch)

        elif op in LOADS or op in STORES:
            latch.memory_address = latch.rs1_value + latch.imm
            if op in POST_INCREMENT:
                latch.increment_value = latch.rs1_value + 4
                self._claim(latch.rs1, latch.increment_value, latch)
            if op in LOADS:
                # Loaded value is published by the Memory stage.
                self._claim(latch.rd, latch.result, latch, ready=False)

        elif op == Opcode.CMP:
            if latch.rs1_value > latch.rs2_value:
                self.positive_flag, self.zero_flag = True, False
            elif latch.rs1_value < latch.rs2_value:
                self.positive_flag, self.zero_flag = False, False
            else:
                self.positive_flag, self.zero_flag = False, True

        elif op in BRANCHES:
            if self._branch_taken(op):
                self._redirect(latch.program_counter + latch.imm)

        elif op == Opcode.JUMP or (op == Opcode.NOP and self.legacy_nop_jump):
            self._redirect(latch.rs1_value + latch.imm)

        elif op not in (Opcode.NOP, Opcode.HALT):
            raise ConfigurationError(
                f"execute: unrecognized opcode {op!r} at pc({latch.program_counter})")

        self.memory.copy_from(latch)
        latch.has_instruction = False
        self._trace("Execute", self.memory)

    def _stage_memory(self):
        """MEM: data memory access for loads and stores."""
        latch = self.memory
        if not latch.has_instruction:
            return

        if latch.opcode in LOADS:
            latch.result = self.mem_read(latch.memory_address)
            self.scoreboard.publish(latch.rd, latch.result, latch.sequence)
        elif latch.opcode in STORES:
            self.mem_write(latch.memory_address, latch.rs2_value)

        self.writeback.copy_from(latch)
        latch.has_instruction = False
        self._trace("Memory", self.writeback)

    def _stage_writeback(self) -> bool:
        """WB: commit results. Returns True when the retiring instruction is HALT."""
        latch = self.writeback
        if not latch.has_instruction:
            return False

        op = latch.opcode
        if op in POST_INCREMENT:
            self.regs[latch.rs1] = latch.increment_value
            self.scoreboard.release(latch.rs1)
        if op in WRITES_RD:
            self._check_register(latch.rd)
            self.regs[latch.rd] = latch.result
            self.scoreboard.release(latch.rd)

        self.instructions_retired_count += 1
        latch.has_instruction = False
        self._trace("Writeback", latch)
        return op == Opcode.HALT

    # ── Main cycle ──────────────────────────────────────────────────────

    def step(self) -> bool:
        """
        Advance the pipeline by one clock cycle. Returns True when a HALT
        retired during this cycle.
        """
        if self.halted:
            return True

        if self.verbose:
            print("--------------------------------------------")
            print(f"Clock Cycle #: {self.clock_cycle}")
            print("--------------------------------------------")

        for stage in self.STAGE_ORDER:
            handler = getattr(self, "_stage_" + stage)
            if handler() is True:
                # HALT retired; nothing younger is left in the pipe
                self.halted = True
                self.stop_reason = "halt"
                break

        self.clock_cycle += 1
        return self.halted

    def run(self) -> Tuple[int, int]:
        """
        Run until HALT retires, the cycle budget is spent, or the user quits
        a single-step session. Returns ``(clock_cycle, instructions_retired)``.
        """
        while not self.halted:
            if self.cycle_limit is not None and self.clock_cycle >= self.cycle_limit:
                self.stop_reason = "cycle_limit"
                break
            self.step()
            if self.run_mode == "single_step" and not self.halted:
                self.dump_registers()
                try:
                    answer = input("Press any key to advance CPU Clock or <q> to quit:\n")
                except EOFError:
                    answer = "q"
                if answer.strip().lower() == "q":
                    self.stop_reason = "user_quit"
                    break
        return self.clock_cycle, self.instructions_retired_count

    # ── Inspection ──────────────────────────────────────────────────────

    def register_snapshot(self) -> List[Tuple[int, int, bool]]:
        """``(index, committed value, pending)`` for every register."""
        return [(i, v, self.scoreboard.pending[i]) for i, v in enumerate(self.regs)]

    def memory_snapshot(self, n: int = 10) -> List[int]:
        return list(self.data_memory[:n])

    # ── Debug / display ─────────────────────────────────────────────────

    def _trace(self, label: str, latch: StageLatch):
        if self.verbose:
            print(f"{label:<15}: pc({latch.program_counter}) {latch.instruction}")

    def dump_registers(self):
        print("\n═══ Register File ═══")
        for i, value, pending in self.register_snapshot():
            status = "invalid" if pending else "valid"
            print(f"  R[{i:<2d}]  Value={value:<8d}  status={status}")

    def dump_memory(self, limit: int = 10):
        print("\n═══ Data Memory ═══")
        for addr, value in enumerate(self.memory_snapshot(limit)):
            print(f"  MEM[{addr}]  Data Value={value}")

    def dump_stats(self):
        print("\n═══ Simulation Statistics ═══")
        print(f"  Total cycles:         {self.clock_cycle}")
        print(f"  Instructions:         {self.instructions_retired_count}")
        if self.instructions_retired_count > 0:
            print(f"  CPI:                  "
                  f"{self.clock_cycle / self.instructions_retired_count:.2f}")
        print(f"  Pipeline flushes:     {self.flush_count}")
        print(f"  Fetch bubbles:        {self.bubble_count}")
        print(f"  Flags:                Z={int(self.zero_flag)} P={int(self.positive_flag)}")
        if self.hazard_log:
            print(f"  Forwarding hazards:   {len(self.hazard_log)}")

# ─────────────────────────────────────────────────────────────────────────────
# Demo program
# ─────────────────────────────────────────────────────────────────────────────

DEMO_PROGRAM = """\
MOVC,R0,#5
MOVC,R1,#10
ADD,R2,R0,R1
SUB,R3,R1,R0
MUL,R4,R2,R3
STORE,R4,R0,#0
LOAD,R5,R0,#0
ADDL,R7,R0,#1
CMP,R4,R5
BZ,#8
MOVC,R6,#99
MOVC,R6,#7
HALT
"""


def demo_program() -> List[Instruction]:
    """
    A small APEX program that exercises forwarding, memory and a taken branch:

        MOVC  R0,#5            # R0 = 5
        MOVC  R1,#10           # R1 = 10
        ADD   R2,R0,R1         # R2 = 15  (both operands forwarded)
        SUB   R3,R1,R0         # R3 = 5
        MUL   R4,R2,R3         # R4 = 75
        STORE R4,R0,#0         # MEM[5] = 75
        LOAD  R5,R0,#0         # R5 = 75
        ADDL  R7,R0,#1         # R7 = 6   (keeps R5 out of the load-use slot)
        CMP   R4,R5            # equal -> Z
        BZ    #8               # taken, skips the next MOVC
        MOVC  R6,#99           # squashed
        MOVC  R6,#7            # R6 = 7
        HALT
    """
    return parse_program(DEMO_PROGRAM.splitlines(), source="<demo>")

# ─────────────────────────────────────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="APEX 5-stage pipeline simulator"
    )
    parser.add_argument("file", nargs="?", default=None,
                        help="APEX program, one instruction per line")
    parser.add_argument("function", nargs="?", default="simulate", choices=MODES,
                        help="simulate (default), display (trace every cycle) "
                             "or single_step")
    parser.add_argument("--cycles", "-n", type=int, default=None,
                        help="Stop after this many cycles")
    parser.add_argument("--legacy-flags", action="store_true",
                        help="Negative arithmetic results set the positive flag; "
                             "AND/OR/XOR leave flags untouched")
    parser.add_argument("--legacy-nop-jump", action="store_true",
                        help="Treat NOP like JUMP with its (zero) operands")
    args = parser.parse_args(argv)

    try:
        if args.file:
            program = load_program(args.file)
            print(f"Loaded {len(program)} instructions from {args.file}")
        else:
            program = demo_program()
            print(f"Running built-in demo program ({len(program)} instructions)\n")

        cpu = APEXCPU(program, mode=args.function, cycles=args.cycles,
                      legacy_flags=args.legacy_flags,
                      legacy_nop_jump=args.legacy_nop_jump)
        cycles, retired = cpu.run()
    except SimulatorError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    verb = "Complete" if cpu.stop_reason == "halt" else "Stopped"
    print(f"APEX_CPU: Simulation {verb}, cycles = {cycles} instructions = {retired}")

    if args.function != "single_step":
        cpu.dump_registers()
        cpu.dump_memory()
    cpu.dump_stats()

    # Quick sanity checks for the demo program
    if not args.file and cpu.stop_reason == "halt":
        print("\n═══ Demo Assertions ═══")
        checks = [
            (cpu.regs[2], 15,          "R2 = 15 (5 + 10)"),
            (cpu.regs[3], 5,           "R3 = 5  (10 - 5)"),
            (cpu.regs[4], 75,          "R4 = 75 (15 * 5)"),
            (cpu.regs[5], 75,          "R5 = 75 (loaded from MEM[5])"),
            (cpu.regs[6], 7,           "R6 = 7  (BZ skipped MOVC #99)"),
            (cpu.regs[7], 6,           "R7 = 6  (5 + 1)"),
            (cpu.data_memory[5], 75,   "MEM[5] = 75"),
        ]
        all_pass = True
        for actual, expected, desc in checks:
            status = "✓" if actual == expected else "✗"
            if status == "✗":
                all_pass = False
            print(f"  {status}  {desc}  (got {actual}, expected {expected})")

        if all_pass:
            print("\n  All checks passed")
        else:
            print("\n  Some checks failed, debug with the display function")
    return 0


if __name__ == "__main__":
    sys.exit(main())
