# src/simgen_core/codegen/program.py
"""
Assembles the complete C++ translation unit for a model.

Layout of the generated file:

    includes and namespaces
    static objects (constant matrices, file handles)
    forward declarations, children first
    class declarations, children first, each instance class before its population class
    Wrapper
    member function definitions
    main
"""
import logging
from typing import List

from ..analysis.planner import PlanTable
from ..config import CompileConfig
from ..eqset import EquationSet
from .cxx_ast import Blank, ClassDecl, CxxPrinter, Field, Function, Line, Node, TranslationUnit, Try
from .declarations import buffer_classes, instance_base, instance_fields, population_fields
from .definitions import InstanceDefinitions, PopulationDefinitions
from .render import RenderContext
from .statics import StaticObjects
from . import naming

logger = logging.getLogger(__name__)


class ProgramGenerator:
    """
    Turns an analyzed equation-set tree and its frozen plan table into C++
    source text. Generation only reads the tree and the plans.
    """

    def __init__(self, config: CompileConfig):
        self.config = config
        self.T = config.T

    def generate(self, root: EquationSet, table: PlanTable) -> str:
        logger.info(f"Generating C++ for model '{root.name}' (numeric type {self.T}).")
        statics = StaticObjects(self.config).discover(root, table)
        unit = TranslationUnit()
        items = unit.items

        items.extend(self.preamble())
        items.extend(statics.definitions)
        items.append(Blank())

        for s in root.walk_bottom_up():
            items.append(Line(f"class {naming.class_name(s)};"))
            items.append(Line(f"class {naming.population_class(s)};"))
        items.append(Line(f"class {naming.WRAPPER};"))
        items.append(Blank())

        definitions: List[Function] = []
        for s in root.walk_bottom_up():
            ctx = RenderContext(s=s, table=table, config=self.config, statics=statics)
            instance, population = self.classes(ctx)
            items += [instance, Blank(), population, Blank()]
            definitions += instance.methods + population.methods

        wrapper = self.wrapper(root, table)
        items += [wrapper, Blank()]
        items.extend(definitions)
        items.extend(wrapper.methods)
        items.append(self.main(root))

        text = CxxPrinter().print(unit)
        logger.info(f"Generated {len(definitions)} member function(s) for model '{root.name}'.")
        return text

    def preamble(self) -> List[Node]:
        runtime_dir = self.config.runtime_dir
        header = (runtime_dir / "runtime.h").as_posix() if runtime_dir else "runtime.h"
        return [
            Line(f'#include "{header}"'),
            Blank(),
            Line("#include <iostream>"),
            Line("#include <vector>"),
            Line("#include <cmath>"),
            Blank(),
            Line("using namespace std;"),
            Line("using namespace fl;"),
            Blank(),
        ]

    def classes(self, ctx: RenderContext):
        s, bed = ctx.s, ctx.bed
        local = ctx.derive(global_=False)
        glob = ctx.derive(global_=True)
        instance = ClassDecl(
            name=naming.class_name(s),
            base=instance_base(s, ctx),
            nested=buffer_classes(bed.local, local),
            fields=instance_fields(local),
            methods=InstanceDefinitions(local).generate(),
        )
        population = ClassDecl(
            name=naming.population_class(s),
            base=f"Population<{self.T}>",
            nested=buffer_classes(bed.global_, glob),
            fields=population_fields(glob),
            methods=PopulationDefinitions(glob).generate(),
        )
        logger.debug(
            f"Classes for '{s.fqn}': {len(instance.methods)} instance and "
            f"{len(population.methods)} population member function(s)."
        )
        return instance, population

    def wrapper(self, root: EquationSet, table: PlanTable) -> ClassDecl:
        """Top-level part that owns the model's population and drives the simulator."""
        member = naming.population_member(root)
        body: List[Node] = [
            Line(f"population = &{member};"),
            Line(f"{member}.container = this;"),
        ]
        if table[root].singleton:
            body.append(Line(f"{member}.instance.container = this;"))
        return ClassDecl(
            name=naming.WRAPPER,
            base=f"WrapperBase<{self.T}>",
            fields=[Field(naming.population_class(root), member)],
            methods=[Function(naming.WRAPPER, naming.WRAPPER, return_type="", body=body)],
        )

    def main(self, root: EquationSet) -> Function:
        T = self.T
        body: List[Node] = []
        if self.config.fixed_point:
            dt = root.find("$t'")
            body.append(Line(f"Event<int>::exponent = {dt.exponent};"))
        body += [
            Line(f"Simulator<{T}>::instance.integrator = new {self.config.integrator.value}<{T}>;"),
            Line("Wrapper wrapper;"),
            Line(f"Simulator<{T}>::instance.run (wrapper);"),
            Line("outputClose ();"),
        ]
        handler: List[Node] = [
            Line('cerr << "Exception: " << message << endl;'),
            Line("return 1;"),
        ]
        return Function(
            "main", return_type="int", params="int argc, char * argv[]",
            body=[Try(body, [("const char * message", handler)]), Line("return 0;")],
        )
