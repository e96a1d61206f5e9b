import os

import numpy as np
import pandas as pd
import pytest

from conftest import make_cohort
from PsychWGCNA import WGCNA, readWGCNA
from PsychWGCNA.network import Network


@pytest.fixture(scope="module")
def cohortWGCNA():
    counts, sampleInfo = make_cohort()
    # metadata in a different order than the counts and without the first sample
    sampleInfo = sampleInfo.sample(frac=1, random_state=0)
    sampleInfo = sampleInfo[sampleInfo['sample_id'] != 'S00']

    pyWGCNA = WGCNA(name='cohort', counts=counts, sampleInfo=sampleInfo, vstFitType='mean',
                    minModuleSize=15, power=6, powers=[1, 2, 4, 6, 8], save=False)
    pyWGCNA.runWGCNA()
    pyWGCNA.setMetadataColor('diagnosis', {'Control': 'green', 'SCZ': 'red'})
    pyWGCNA.setMetadataColor('ethnicity', {'European': 'blue', 'African American': 'orange'})
    pyWGCNA.analyseWGCNA()
    return pyWGCNA, counts, sampleInfo


def test_preprocess_summary_and_sample_order(cohortWGCNA):
    pyWGCNA, counts, sampleInfo = cohortWGCNA

    summary = pyWGCNA.preprocessSummary
    assert summary['nGenesInput'] == counts.shape[0]
    assert summary['nSamplesInput'] == sampleInfo.shape[0]
    # the lowly expressed genes are filtered out
    assert summary['nGenesExpressed'] == counts.shape[0] - 5
    assert summary['nGenesKept'] == pyWGCNA.datExpr.shape[1]
    assert pyWGCNA.datExpr.obs_names.tolist() == sampleInfo['sample_id'].tolist()
    assert 'S00' not in pyWGCNA.datExpr.obs_names


def test_modules_found(cohortWGCNA):
    pyWGCNA, _, _ = cohortWGCNA

    var = pyWGCNA.datExpr.var
    assert var['moduleColors'].notnull().all()
    assert {'dynamicColors', 'moduleColors', 'moduleLabels', 'block', 'kME'} <= set(var.columns)
    modules = [m for m in pyWGCNA.getModuleName() if m != pyWGCNA.naColor]
    assert len(modules) >= 2
    assert pyWGCNA.power == 6
    assert pyWGCNA.sft['Power'].tolist() == [1, 2, 4, 6, 8]

    assert set(pyWGCNA.MEs.columns) == {"ME" + m for m in modules}
    assert pyWGCNA.MEs.index.equals(pyWGCNA.datExpr.obs_names)
    # genes of a module follow its eigengene
    assert (var.loc[var['moduleColors'] != pyWGCNA.naColor, 'kME'] > 0).all()
    assert var.loc[var['moduleColors'] == pyWGCNA.naColor, 'kME'].isnull().all()

    assert var['moduleLabels'].notnull().all()
    assert (var.loc[var['moduleColors'] == pyWGCNA.naColor, 'moduleLabels'] == 0).all()
    assert var['moduleLabels'].tolist() == Network.colors2labels(var['moduleColors'].values).tolist()


def test_module_trait_relationship(cohortWGCNA):
    pyWGCNA, _, _ = cohortWGCNA

    assert {'diagnosis', 'ethnicity', 'age'} <= set(pyWGCNA.datTraits.columns)
    assert pyWGCNA.moduleTraitCor.shape == (pyWGCNA.MEs.shape[1], pyWGCNA.datTraits.shape[1])
    assert ((pyWGCNA.moduleTraitPvalue >= 0) & (pyWGCNA.moduleTraitPvalue <= 1)).all().all()
    assert pyWGCNA.moduleTraitPvalue['diagnosis'].min() < 0.01


def test_covariate_model(cohortWGCNA):
    pyWGCNA, _, _ = cohortWGCNA

    assert pyWGCNA.design.columns.tolist() == ['(Intercept)', 'diagnosisSCZ', 'ethnicityEuropean']
    assert set(pyWGCNA.limmaResults.keys()) == {'diagnosisSCZ', 'ethnicityEuropean'}

    table = pyWGCNA.limmaResults['diagnosisSCZ']
    assert table.columns.tolist() == ['logFC', 'AveExpr', 't', 'P.Value', 'adj.P.Val']
    assert table.index.tolist() == pyWGCNA.MEs.columns.tolist()
    assert table['adj.P.Val'].min() < 0.05


def test_accessors(cohortWGCNA):
    pyWGCNA, _, _ = cohortWGCNA
    module = [m for m in pyWGCNA.getModuleName() if m != pyWGCNA.naColor][0]
    gene = pyWGCNA.datExpr.var_names[pyWGCNA.datExpr.var['moduleColors'] == module][0]

    assert pyWGCNA.getModulesGene(gene) == module
    assert pyWGCNA.getModulesGene(['not_a_gene']) is None
    genes = pyWGCNA.getGeneModule(module)
    assert gene in genes[module].index
    assert pyWGCNA.getGeneModule('not_a_module') is None

    hubs = pyWGCNA.top_n_hub_genes(module, n=5)
    assert hubs.shape[0] == 5
    assert (np.diff(hubs['kWithin']) <= 0).all()
    assert (hubs['moduleColors'] == module).all()
    assert pyWGCNA.top_n_hub_genes('not_a_module') is None

    assert pyWGCNA.setMetadataColor('not_a_column', {'a': 'red'}) is None
    assert 'not_a_column' not in pyWGCNA.metadata_colors


def test_save_read_and_export(cohortWGCNA, tmp_path):
    pyWGCNA, _, _ = cohortWGCNA
    outputPath = pyWGCNA.outputPath
    pyWGCNA.outputPath = str(tmp_path)
    try:
        pyWGCNA.saveWGCNA()
        pyWGCNA.exportResults()
    finally:
        pyWGCNA.outputPath = outputPath

    loaded = readWGCNA(str(tmp_path / 'cohort.p'))
    assert loaded.name == 'cohort'
    assert loaded.datExpr.var['moduleColors'].tolist() == pyWGCNA.datExpr.var['moduleColors'].tolist()
    assert np.allclose(loaded.MEs.values, pyWGCNA.MEs.values)

    for suffix in ['geneModules', 'eigengenes', 'softThreshold', 'moduleTraitCor', 'moduleTraitPvalue', 'design',
                   'limma_diagnosisSCZ']:
        assert os.path.isfile(tmp_path / f"cohort_{suffix}.csv")
    geneModules = pd.read_csv(tmp_path / 'cohort_geneModules.csv', index_col=0)
    assert geneModules.index.tolist() == pyWGCNA.datExpr.var_names.tolist()


def test_module_eigengene_figure(cohortWGCNA, tmp_path):
    pyWGCNA, _, _ = cohortWGCNA
    module = [m for m in pyWGCNA.getModuleName() if m != pyWGCNA.naColor][0]
    os.makedirs(tmp_path / 'figures')
    outputPath = pyWGCNA.outputPath
    pyWGCNA.outputPath = str(tmp_path)
    pyWGCNA.save = True
    try:
        pyWGCNA.plotModuleEigenGene(module, ['diagnosis', 'ethnicity'])
        # missing metadata colors or modules are reported and skipped
        assert pyWGCNA.plotModuleEigenGene(module, ['age']) is None
        assert pyWGCNA.plotModuleEigenGene('not_a_module', ['diagnosis']) is None
    finally:
        pyWGCNA.outputPath = outputPath
        pyWGCNA.save = False

    assert os.path.isfile(tmp_path / 'figures' / f"ModuleHeatmapEigengene{module}.png")
    assert not os.path.isfile(tmp_path / 'figures' / 'ModuleHeatmapEigengenenot_a_module.png')


def test_save_creates_figure_directory(cohort, tmp_path):
    counts, sampleInfo = cohort

    WGCNA(counts=counts, sampleInfo=sampleInfo, save=True, outputPath=str(tmp_path))

    assert os.path.isdir(tmp_path / 'figures')


def test_invalid_parameters(cohort):
    counts, _ = cohort
    with pytest.raises(ValueError):
        WGCNA(counts=counts, normalization='tpm')
    with pytest.raises(ValueError):
        WGCNA(counts=counts, topGenesMethod='iqr')
    with pytest.raises(ValueError):
        WGCNA(counts=counts).analyseWGCNA()


def test_log2cpm_pipeline_without_modules(cohort):
    counts, sampleInfo = cohort
    # too large minimum module size leaves every gene unassigned
    pyWGCNA = WGCNA(counts=counts, sampleInfo=sampleInfo, normalization='log2cpm', minModuleSize=1000,
                    power=6, powers=[1, 6], save=False)

    pyWGCNA.runWGCNA()

    assert pyWGCNA.getModuleName() == [pyWGCNA.naColor]
    assert pyWGCNA.MEs.shape[1] == 0

    pyWGCNA.analyseWGCNA()

    assert pyWGCNA.moduleTraitCor is None
    assert pyWGCNA.fit is None
    assert pyWGCNA.limmaResults is None
    assert pyWGCNA.plotCovariateHeatmap() is None


def test_full_analysis_saves_figures(cohort, tmp_path):
    counts, sampleInfo = cohort
    pyWGCNA = WGCNA(name='cohort', counts=counts, sampleInfo=sampleInfo, vstFitType='mean', minModuleSize=15,
                    power=6, powers=[1, 2, 4, 6, 8], save=True, outputPath=str(tmp_path))
    pyWGCNA.setMetadataColor('diagnosis', {'Control': 'green', 'SCZ': 'red'})
    pyWGCNA.setMetadataColor('ethnicity', {'European': 'blue', 'African American': 'orange'})

    pyWGCNA.runWGCNA()
    pyWGCNA.analyseWGCNA()

    figures = tmp_path / 'figures'
    for name in ['sampleClusteringCleaning', 'summarypower', 'dendrogram_block1', 'eigengenes',
                 'Module-traitRelationships', 'covariateHeatmap', 'eigengeneHeatmap']:
        assert os.path.isfile(figures / f"{name}.png")
    modules = [m for m in pyWGCNA.getModuleName() if m != pyWGCNA.naColor]
    assert len(modules) >= 2
    for module in modules:
        assert os.path.isfile(figures / f"ModuleHeatmapEigengene{module}.png")


def test_modules_over_several_blocks(cohort, tmp_path):
    counts, sampleInfo = cohort
    pyWGCNA = WGCNA(name='cohort', counts=counts, sampleInfo=sampleInfo, vstFitType='mean', minModuleSize=15,
                    power=6, powers=[1, 6], maxBlockSize=60, save=True, outputPath=str(tmp_path))

    pyWGCNA.runWGCNA()

    var = pyWGCNA.datExpr.var
    assert len(np.unique(var['block'])) > 1
    assert len(pyWGCNA.geneTrees) > 1
    assert var['moduleColors'].notnull().all()
    assert var['moduleLabels'].notnull().all()
    for block, genes in pyWGCNA.blockGenes.items():
        assert (var.loc[genes, 'block'] == block).all()
    for block in pyWGCNA.geneTrees:
        assert os.path.isfile(tmp_path / 'figures' / f"dendrogram_block{block + 1}.png")


def test_one_hot_traits_keep_column_name(cohort):
    counts, sampleInfo = cohort
    sampleInfo = sampleInfo.copy()
    sampleInfo['region'] = np.tile(['cortex', 'striatum', 'Unknown', 'Unknown'], sampleInfo.shape[0] // 4)
    sampleInfo['batch'] = np.tile(['b1', 'b2', 'Unknown', 'b2'], sampleInfo.shape[0] // 4)
    pyWGCNA = WGCNA(counts=counts, sampleInfo=sampleInfo, save=False)

    pyWGCNA.updateDatTraits()

    assert {'regioncortex', 'regionstriatum', 'regionUnknown', 'batchb1', 'batchb2', 'batchUnknown'} <= \
        set(pyWGCNA.datTraits.columns)
    assert 'Unknown' not in pyWGCNA.datTraits.columns
    assert pyWGCNA.datTraits['regionUnknown'].sum() == sampleInfo.shape[0] // 2
    assert pyWGCNA.datTraits['batchUnknown'].sum() == sampleInfo.shape[0] // 4


def test_go_term_of_unknown_module_creates_nothing(cohortWGCNA, tmp_path):
    pyWGCNA, _, _ = cohortWGCNA
    outputPath = pyWGCNA.outputPath
    pyWGCNA.outputPath = str(tmp_path)
    try:
        assert pyWGCNA.findGoTerm('not_a_module') is None
    finally:
        pyWGCNA.outputPath = outputPath

    assert not os.path.exists(tmp_path / 'figures' / 'Go_term')


def test_plot_color():
    assert WGCNA.plotColor('grey60') == '#999999'
    assert WGCNA.plotColor('grey60.1') == '#999999'
    assert WGCNA.plotColor('blue.2') == 'blue'
    assert WGCNA.plotColor('turquoise') == 'turquoise'
